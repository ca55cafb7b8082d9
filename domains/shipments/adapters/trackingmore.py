# domains/shipments/adapters/trackingmore.py
import logging
from typing import Any, Dict

from django.conf import settings

from .base import CarrierAdapter, ProviderUnavailable, TrackingPoint, TrackingResult, parse_dt

logger = logging.getLogger(__name__)


class TrackingMoreAdapter(CarrierAdapter):
    """
    자체 API 가 없는 택배사용 중계(aggregator) 어댑터.
    Carrier.aggregator == "trackingmore" 이면 레지스트리가 이 어댑터를 대신 돌려준다.
    """

    code = "TRACKINGMORE"
    status_vocab = "TRACKINGMORE"

    def __init__(self, config):
        super().__init__(config)
        self.api_key = getattr(settings, "TRACKINGMORE_API_KEY", "") or config.api_key
        self.base_url = getattr(settings, "TRACKINGMORE_HOST", "https://api.trackingmore.com")

    def headers(self) -> Dict[str, str]:
        h = super().headers()
        h["Tracking-Api-Key"] = self.api_key
        return h

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def fetch(self, tracking_number: str) -> Dict[str, Any]:
        if not self.api_key:
            raise ProviderUnavailable(
                "TrackingMore API key not configured", carrier_code=self.config.code
            )
        courier = self.config.aggregator_slug or self.config.code.lower().replace("_", "-")
        params = {"tracking_numbers": tracking_number, "courier_code": courier}
        logger.info("Fetching tracking info from TrackingMore: %s/%s", courier, tracking_number)
        return self._get("v4/trackings/get", params=params)

    def parse(self, tracking_number: str, data: Dict[str, Any]) -> TrackingResult:
        rows = data.get("data") or []
        if not rows:
            raise ValueError("tracking not registered at aggregator")
        item = rows[0]
        status = self.map_status(item.get("delivery_status"))

        points = []
        for cp in (item.get("origin_info") or {}).get("trackinfo") or []:
            dt = parse_dt(cp.get("checkpoint_date"))
            if dt is None:
                continue
            points.append(
                TrackingPoint(
                    occurred_at=dt,
                    status=self.map_status(cp.get("checkpoint_delivery_status")),
                    location=cp.get("location") or "",
                    description=cp.get("tracking_detail") or "",
                )
            )

        location = ""
        if points:
            location = max(points, key=lambda p: p.occurred_at).location
        return TrackingResult(
            status=status,
            points=points,
            estimated_delivery=parse_dt(item.get("scheduled_delivery_date")),
            actual_delivery=parse_dt(item.get("lastest_checkpoint_time")) if status == "delivered" else None,
            location=location,
            raw=data,
        )
