# domains/shipments/adapters/bluedart.py
from __future__ import annotations

from typing import Any, Dict

from .base import CarrierAdapter, TrackingPoint, TrackingResult, parse_dt


class BlueDartAdapter(CarrierAdapter):
    """Blue Dart 추적 API (Bearer 토큰)."""

    code = "BLUE_DART"

    def headers(self) -> Dict[str, str]:
        h = super().headers()
        h["Authorization"] = f"Bearer {self.config.api_key}"
        return h

    def fetch(self, tracking_number: str) -> Dict[str, Any]:
        return self._get(f"tracking/{tracking_number}")

    def parse(self, tracking_number: str, data: Dict[str, Any]) -> TrackingResult:
        points = []
        for scan in data.get("scans") or []:
            dt = parse_dt(scan.get("scanDate"))
            if dt is None:
                continue
            points.append(
                TrackingPoint(
                    occurred_at=dt,
                    status=self.map_status(scan.get("scanCode")),
                    location=scan.get("scannedLocation") or "",
                    description=scan.get("scanDescription") or "",
                )
            )
        return TrackingResult(
            status=self.map_status(data.get("status")),
            points=points,
            estimated_delivery=parse_dt(data.get("expectedDeliveryDate")),
            actual_delivery=parse_dt(data.get("deliveryDate")),
            location=data.get("currentLocation") or "",
            raw=data,
        )
