# domains/shipments/adapters/dtdc.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from django.utils import timezone

from .base import CarrierAdapter, TrackingPoint, TrackingResult, parse_dt


def _dtdc_dt(date_s: str, time_s: str = "") -> Optional[datetime]:
    """DTDC 는 날짜 `ddmmyyyy`, 시각 `HHMM` 을 따로 준다. ISO 문자열이 오면 그대로 파싱."""
    date_s = (date_s or "").strip()
    if not date_s:
        return None
    if "-" in date_s:
        return parse_dt(date_s)
    time_s = (time_s or "0000").strip().replace(":", "")[:4].ljust(4, "0")
    try:
        dt = datetime.strptime(f"{date_s}{time_s}", "%d%m%Y%H%M")
    except ValueError:
        return None
    return timezone.make_aware(dt)


class DTDCAdapter(CarrierAdapter):
    """DTDC 추적 API (X-API-Key 헤더)."""

    code = "DTDC"

    def headers(self) -> Dict[str, str]:
        h = super().headers()
        h["X-API-Key"] = self.config.api_key
        return h

    def fetch(self, tracking_number: str) -> Dict[str, Any]:
        return self._get(f"track/{tracking_number}")

    def parse(self, tracking_number: str, data: Dict[str, Any]) -> TrackingResult:
        header = data.get("trackHeader") or {}
        status = self.map_status(header.get("strStatus"))
        points = []
        for row in data.get("trackDetails") or []:
            dt = _dtdc_dt(row.get("strActionDate"), row.get("strActionTime"))
            if dt is None:
                continue
            points.append(
                TrackingPoint(
                    occurred_at=dt,
                    status=self.map_status(row.get("strCode") or row.get("strAction")),
                    location=row.get("strOrigin") or "",
                    description=row.get("strAction") or "",
                )
            )

        actual = None
        if status == "delivered":
            actual = _dtdc_dt(header.get("strStatusTransOn"), header.get("strStatusTransTime"))
        return TrackingResult(
            status=status,
            points=points,
            estimated_delivery=_dtdc_dt(header.get("strExpectedDeliveryDate")),
            actual_delivery=actual,
            location=header.get("strStatusRelName") or header.get("strOrigin") or "",
            raw=data,
        )
