# domains/shipments/adapters/xpressbees.py
from __future__ import annotations

from typing import Any, Dict

from .base import CarrierAdapter, TrackingResult


class XpressBeesAdapter(CarrierAdapter):
    code = "XPRESSBEES"

    def headers(self) -> Dict[str, str]:
        h = super().headers()
        h["Authorization"] = f"Bearer {self.config.api_key}"
        return h

    def fetch(self, tracking_number: str) -> Dict[str, Any]:
        return self._get(f"track/{tracking_number}")

    def parse(self, tracking_number: str, data: Dict[str, Any]) -> TrackingResult:
        # XpressBees 는 본문을 data 로 한 번 감싸서 준다
        return self._timeline_result(data.get("data") or data)
