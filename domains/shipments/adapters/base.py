# domains/shipments/adapters/base.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, List, Optional

import requests
from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from ..status_map import map_provider_status

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15
MIN_TIMEOUT = 10
MAX_TIMEOUT = 30


# ─────────────────────────────────────────────────────────────
# 오류 분류
# ─────────────────────────────────────────────────────────────
class CarrierError(Exception):
    """택배사 연동 오류의 공통 부모."""

    def __init__(self, message: str = "", *, carrier_code: str = "", tracking_number: str = ""):
        super().__init__(message)
        self.carrier_code = carrier_code
        self.tracking_number = tracking_number


class InvalidFormat(CarrierError):
    """운송장 번호가 택배사 패턴과 맞지 않음. 네트워크 호출 전에 발생."""


class ProviderUnavailable(CarrierError):
    """전송/타임아웃/5xx/파싱 실패. 다음 주기에 재시도 대상."""


class UnknownCarrier(CarrierError):
    """레지스트리에 없는 택배사 코드 (설정 오류)."""


# ─────────────────────────────────────────────────────────────
# 설정/결과 값 객체
# ─────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class CarrierConfig:
    code: str
    name: str = ""
    display_name: str = ""
    api_endpoint: str = ""
    api_key: str = ""
    api_secret: str = ""
    webhook_secret: str = ""
    tracking_url_template: str = ""
    tracking_pattern: str = ""
    aggregator: str = ""
    aggregator_slug: str = ""

    def validate_tracking_number(self, tracking_number: str) -> bool:
        """패턴이 없으면 모든 번호 허용."""
        if not self.tracking_pattern:
            return True
        return re.fullmatch(self.tracking_pattern, (tracking_number or "").strip()) is not None

    def build_tracking_url(self, tracking_number: str) -> Optional[str]:
        if not self.tracking_url_template:
            return None
        return self.tracking_url_template.replace("{tracking_number}", tracking_number or "")


@dataclass(frozen=True)
class TrackingPoint:
    occurred_at: datetime
    status: str
    location: str = ""
    description: str = ""


@dataclass
class TrackingResult:
    status: str
    points: List[TrackingPoint] = field(default_factory=list)
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    location: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


def parse_dt(value) -> Optional[datetime]:
    """ISO8601/`YYYY-MM-DD HH:MM:SS` 문자열 → aware datetime. 실패 시 None."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if s.count("-") < 2:
            return None
        dt = parse_datetime(s.replace(" ", "T", 1) if "T" not in s else s)
        if dt is None:
            return None
    if timezone.is_naive(dt):
        dt = timezone.make_aware(dt, dt_timezone.utc)
    return dt


def http_timeout() -> float:
    raw = getattr(settings, "CARRIER_HTTP_TIMEOUT", DEFAULT_TIMEOUT)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        value = DEFAULT_TIMEOUT
    return max(MIN_TIMEOUT, min(MAX_TIMEOUT, value))


# ─────────────────────────────────────────────────────────────
# 어댑터 공통 인터페이스
# ─────────────────────────────────────────────────────────────
class CarrierAdapter:
    """
    택배사 1곳의 요청/응답 형태를 전담하는 어댑터.

    하위 클래스는 `fetch`(원본 payload 조회)와 `parse`(→ TrackingResult)만 구현한다.
    `track` 이 사전 검증(InvalidFormat)과 오류 변환(ProviderUnavailable)을 맡는다.
    """

    code = ""
    status_vocab = ""  # status_map 의 어휘 키. 비어 있으면 code 사용

    def __init__(self, config: CarrierConfig):
        self.config = config

    # ----- 진입점 -----
    def track(self, tracking_number: str) -> TrackingResult:
        number = (tracking_number or "").strip()
        carrier_code = self.config.code
        if not number or not self.config.validate_tracking_number(number):
            raise InvalidFormat(
                f"Invalid tracking number format for {self.config.display_name or carrier_code}",
                carrier_code=carrier_code,
                tracking_number=number,
            )

        try:
            data = self.fetch(number)
            result = self.parse(number, data)
        except CarrierError:
            raise
        except requests.Timeout as e:
            raise ProviderUnavailable(
                f"{carrier_code} timeout: {e}", carrier_code=carrier_code, tracking_number=number
            ) from e
        except requests.RequestException as e:
            raise ProviderUnavailable(
                f"{carrier_code} request failed: {e}", carrier_code=carrier_code, tracking_number=number
            ) from e
        except (ValueError, KeyError, TypeError, IndexError, AttributeError) as e:
            raise ProviderUnavailable(
                f"{carrier_code} unparseable response: {e}",
                carrier_code=carrier_code,
                tracking_number=number,
            ) from e

        result.points.sort(key=lambda p: p.occurred_at)
        return result

    # ----- 하위 클래스 구현 -----
    def fetch(self, tracking_number: str) -> Dict[str, Any]:
        raise NotImplementedError

    def parse(self, tracking_number: str, data: Dict[str, Any]) -> TrackingResult:
        raise NotImplementedError

    # ----- 공통 헬퍼 -----
    def map_status(self, provider_status) -> str:
        return map_provider_status(self.status_vocab or self.code, provider_status)

    def headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "Content-Type": "application/json"}

    def _url(self, path: str) -> str:
        base = (self.config.api_endpoint or "").rstrip("/")
        if not base:
            raise ProviderUnavailable(
                f"{self.config.code} api_endpoint not configured", carrier_code=self.config.code
            )
        return f"{base}/{path.lstrip('/')}"

    def _get(self, path: str, *, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = self._url(path)
        logger.debug("GET %s params=%s", url, params)
        res = requests.get(url, headers=self.headers(), params=params, timeout=http_timeout())
        return self._json(res)

    def _post(self, path: str, *, body: Dict[str, Any]) -> Dict[str, Any]:
        url = self._url(path)
        logger.debug("POST %s", url)
        res = requests.post(url, headers=self.headers(), json=body, timeout=http_timeout())
        return self._json(res)

    def _json(self, res) -> Dict[str, Any]:
        if res.status_code >= 400:
            raise ProviderUnavailable(
                f"{self.config.code} API error: {res.status_code}",
                carrier_code=self.config.code,
            )
        data = res.json()
        if not isinstance(data, dict):
            raise ValueError("response body is not an object")
        return data

    def _timeline_result(self, data: Dict[str, Any]) -> TrackingResult:
        """
        {status, timeline:[{timestamp,status,location,description}], estimatedDelivery,
        actualDelivery, location} 형태의 공통 응답 파싱. 여러 국내 택배사가 이 형태를 쓴다.
        """
        points = []
        for row in data.get("timeline") or []:
            dt = parse_dt(row.get("timestamp") or row.get("date"))
            if dt is None:
                continue
            points.append(
                TrackingPoint(
                    occurred_at=dt,
                    status=self.map_status(row.get("status")),
                    location=row.get("location") or "",
                    description=row.get("description") or "",
                )
            )
        return TrackingResult(
            status=self.map_status(data.get("status")),
            points=points,
            estimated_delivery=parse_dt(data.get("estimatedDelivery")),
            actual_delivery=parse_dt(data.get("actualDelivery")),
            location=data.get("location") or "",
            raw=data,
        )
