# domains/shipments/adapters/indiapost.py
from __future__ import annotations

from typing import Any, Dict

from .base import CarrierAdapter, TrackingResult


class IndiaPostAdapter(CarrierAdapter):
    """India Post 추적 (인증 없음, 공통 timeline 응답)."""

    code = "INDIA_POST"

    def fetch(self, tracking_number: str) -> Dict[str, Any]:
        return self._get(f"track/{tracking_number}")

    def parse(self, tracking_number: str, data: Dict[str, Any]) -> TrackingResult:
        return self._timeline_result(data)
