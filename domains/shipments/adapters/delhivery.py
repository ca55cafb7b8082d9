# domains/shipments/adapters/delhivery.py
from __future__ import annotations

from typing import Any, Dict

from .base import CarrierAdapter, TrackingPoint, TrackingResult, parse_dt


class DelhiveryAdapter(CarrierAdapter):
    """Delhivery 추적 API (`Token` 인증 헤더)."""

    code = "DELHIVERY"

    def headers(self) -> Dict[str, str]:
        h = super().headers()
        h["Authorization"] = f"Token {self.config.api_key}"
        return h

    def fetch(self, tracking_number: str) -> Dict[str, Any]:
        return self._get(f"track/{tracking_number}")

    def parse(self, tracking_number: str, data: Dict[str, Any]) -> TrackingResult:
        shipment = data["ShipmentData"][0]["Shipment"]
        current = shipment.get("Status") or {}
        status = self.map_status(current.get("Status"))

        points = []
        for row in shipment.get("Scans") or []:
            scan = row.get("ScanDetail") or {}
            dt = parse_dt(scan.get("ScanDateTime"))
            if dt is None:
                continue
            points.append(
                TrackingPoint(
                    occurred_at=dt,
                    status=self.map_status(scan.get("Scan")),
                    location=scan.get("ScannedLocation") or "",
                    description=scan.get("Instructions") or "",
                )
            )

        return TrackingResult(
            status=status,
            points=points,
            estimated_delivery=parse_dt(shipment.get("ExpectedDeliveryDate")),
            actual_delivery=parse_dt(current.get("StatusDateTime")) if status == "delivered" else None,
            location=current.get("StatusLocation") or "",
            raw=data,
        )
