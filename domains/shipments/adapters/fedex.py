# domains/shipments/adapters/fedex.py
from __future__ import annotations

from typing import Any, Dict

from .base import CarrierAdapter, TrackingPoint, TrackingResult, parse_dt


class FedExAdapter(CarrierAdapter):
    """FedEx Track API v1 (POST, Bearer 토큰)."""

    code = "FEDEX"

    def headers(self) -> Dict[str, str]:
        h = super().headers()
        h["Authorization"] = f"Bearer {self.config.api_key}"
        return h

    def fetch(self, tracking_number: str) -> Dict[str, Any]:
        body = {
            "includeDetailedScans": True,
            "trackingInfo": [{"trackingNumberInfo": {"trackingNumber": tracking_number}}],
        }
        return self._post("track/v1/trackingnumbers", body=body)

    def parse(self, tracking_number: str, data: Dict[str, Any]) -> TrackingResult:
        complete = data["output"]["completeTrackResults"][0]
        track = complete["trackResults"][0]
        latest = track.get("latestStatusDetail") or {}

        points = []
        for ev in track.get("scanEvents") or []:
            dt = parse_dt(ev.get("date"))
            if dt is None:
                continue
            points.append(
                TrackingPoint(
                    occurred_at=dt,
                    status=self.map_status(ev.get("derivedStatusCode") or ev.get("eventType")),
                    location=(ev.get("scanLocation") or {}).get("city") or "",
                    description=ev.get("eventDescription") or "",
                )
            )

        times = {
            row.get("type"): parse_dt(row.get("dateTime"))
            for row in track.get("dateAndTimes") or []
        }
        return TrackingResult(
            status=self.map_status(latest.get("code")),
            points=points,
            estimated_delivery=times.get("ESTIMATED_DELIVERY"),
            actual_delivery=times.get("ACTUAL_DELIVERY"),
            location=(latest.get("scanLocation") or {}).get("city") or "",
            raw=data,
        )
