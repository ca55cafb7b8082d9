from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, Optional, Type

from django.apps import apps
from django.conf import settings

from . import ADAPTERS, AGGREGATORS
from .base import CarrierAdapter, CarrierConfig, UnknownCarrier

logger = logging.getLogger(__name__)


def _norm(code: str) -> str:
    return (code or "").strip().upper().replace("-", "_").replace(" ", "_")


# 흔한 별칭 → 표준 코드
_ALIASES = {
    "BLUEDART": "BLUE_DART",
    "INDIAPOST": "INDIA_POST",
    "SPEED_POST": "INDIA_POST",
    "ECOM": "ECOM_EXPRESS",
    "ECOMEXPRESS": "ECOM_EXPRESS",
    "XBEES": "XPRESSBEES",
    "XPRESS_BEES": "XPRESSBEES",
    "FEDERAL_EXPRESS": "FEDEX",
}


def normalize_code(code: str) -> str:
    key = _norm(code)
    return _ALIASES.get(key, key)


def _env_overrides(config: CarrierConfig) -> CarrierConfig:
    """settings.CARRIER_CREDENTIALS[code] 의 값이 있으면 DB 값을 덮어쓴다."""
    creds = (getattr(settings, "CARRIER_CREDENTIALS", None) or {}).get(config.code) or {}
    changes = {k: v for k, v in creds.items() if v and hasattr(config, k)}
    return replace(config, **changes) if changes else config


class CarrierRegistry:
    """
    활성 택배사 설정 스냅샷 + 코드 → 어댑터 해석.
    설정은 프로세스 재시작 없이 바뀔 수 있으므로 오케스트레이션 1회마다 `load()` 로 새로 읽는다.
    """

    def __init__(
        self,
        carriers: Optional[Iterable[CarrierConfig]] = None,
        adapters: Optional[Dict[str, Type[CarrierAdapter]]] = None,
        aggregators: Optional[Dict[str, Type[CarrierAdapter]]] = None,
    ):
        self._carriers: Dict[str, CarrierConfig] = {c.code: c for c in (carriers or [])}
        self._adapters = dict(ADAPTERS if adapters is None else adapters)
        self._aggregators = dict(AGGREGATORS if aggregators is None else aggregators)

    @classmethod
    def load(cls) -> "CarrierRegistry":
        Carrier = apps.get_model("shipments", "Carrier")
        configs = [_env_overrides(c.to_config()) for c in Carrier.objects.filter(is_active=True)]
        logger.debug("Carrier registry loaded: %s", [c.code for c in configs])
        return cls(configs)

    @property
    def codes(self):
        return sorted(self._carriers)

    def get(self, code: str) -> CarrierConfig:
        key = normalize_code(code)
        config = self._carriers.get(key)
        if config is None:
            raise UnknownCarrier(f"Carrier '{code}' not found or not active", carrier_code=key)
        return config

    def resolve(self, code: str) -> CarrierAdapter:
        """택배사 코드/별칭으로 어댑터 인스턴스를 반환."""
        config = self.get(code)
        if config.aggregator:
            cls = self._aggregators.get(config.aggregator)
        else:
            cls = self._adapters.get(config.code)
        if cls is None:
            raise UnknownCarrier(
                f"No adapter registered for carrier '{code}' (key='{config.code}')",
                carrier_code=config.code,
            )
        return cls(config)

    def validate_tracking_number(self, code: str, tracking_number: str) -> bool:
        return self.get(code).validate_tracking_number(tracking_number)

    def build_tracking_url(self, code: str, tracking_number: str) -> Optional[str]:
        return self.get(code).build_tracking_url(tracking_number)
