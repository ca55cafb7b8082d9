# domains/shipments/adapters/dhl.py
from __future__ import annotations

from typing import Any, Dict

from .base import CarrierAdapter, TrackingPoint, TrackingResult, parse_dt


def _locality(node: Dict[str, Any]) -> str:
    return ((node.get("location") or {}).get("address") or {}).get("addressLocality") or ""


class DHLAdapter(CarrierAdapter):
    """DHL Shipment Tracking API (DHL-API-Key 헤더)."""

    code = "DHL"

    def headers(self) -> Dict[str, str]:
        h = super().headers()
        h["DHL-API-Key"] = self.config.api_key
        return h

    def fetch(self, tracking_number: str) -> Dict[str, Any]:
        return self._get("track/shipments", params={"trackingNumber": tracking_number})

    def parse(self, tracking_number: str, data: Dict[str, Any]) -> TrackingResult:
        shipment = data["shipments"][0]
        current = shipment.get("status") or {}
        status = self.map_status(current.get("statusCode"))

        points = []
        for ev in shipment.get("events") or []:
            dt = parse_dt(ev.get("timestamp"))
            if dt is None:
                continue
            points.append(
                TrackingPoint(
                    occurred_at=dt,
                    status=self.map_status(ev.get("statusCode")),
                    location=_locality(ev),
                    description=ev.get("description") or ev.get("status") or "",
                )
            )

        return TrackingResult(
            status=status,
            points=points,
            estimated_delivery=parse_dt(shipment.get("estimatedTimeOfDelivery")),
            actual_delivery=parse_dt(current.get("timestamp")) if status == "delivered" else None,
            location=_locality(current),
            raw=data,
        )
