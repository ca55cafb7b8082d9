# domains/shipments/webhooks.py
"""
택배사 웹훅 payload → NormalizedUpdate.

택배사마다 필드명/상태 어휘가 다르므로 파서를 택배사 코드별로 둔다.
상태 매핑은 폴링 어댑터와 같은 status_map 을 써서 두 경로가 같은 표준 상태로 모인다.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .adapters.base import parse_dt
from .adapters.provider import normalize_code
from .status_map import map_provider_status

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "HTTP_X_WEBHOOK_SIGNATURE"


@dataclass
class NormalizedUpdate:
    carrier_code: str
    tracking_number: str
    status: str
    location: str = ""
    description: str = ""
    occurred_at: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def _first(payload: Dict[str, Any], *keys: str):
    for k in keys:
        v = payload.get(k)
        if v not in (None, ""):
            return v
    return None


def _build(code: str, payload: Dict[str, Any], *, number, status, location, description,
           occurred_at, estimated, actual) -> NormalizedUpdate:
    return NormalizedUpdate(
        carrier_code=code,
        tracking_number=str(number or "").strip(),
        status=map_provider_status(code, status),
        location=str(location or ""),
        description=str(description or ""),
        occurred_at=parse_dt(occurred_at),
        estimated_delivery=parse_dt(estimated),
        actual_delivery=parse_dt(actual),
        raw=payload,
    )


# ─────────────────────────────────────────────────────────────
# 택배사별 파서
# ─────────────────────────────────────────────────────────────
def parse_blue_dart(payload: Dict[str, Any]) -> NormalizedUpdate:
    return _build(
        "BLUE_DART",
        payload,
        number=payload.get("waybill_number"),
        status=payload.get("status"),
        location=payload.get("location"),
        description=payload.get("status_description"),
        occurred_at=_first(payload, "status_date", "event_time"),
        estimated=payload.get("estimated_delivery_date"),
        actual=payload.get("actual_delivery_date"),
    )


def parse_dtdc(payload: Dict[str, Any]) -> NormalizedUpdate:
    return _build(
        "DTDC",
        payload,
        number=payload.get("consignment_number"),
        status=payload.get("status"),
        location=payload.get("current_location"),
        description=payload.get("status_description"),
        occurred_at=_first(payload, "status_timestamp", "event_time"),
        estimated=payload.get("expected_delivery_date"),
        actual=payload.get("delivery_date"),
    )


def _camel_case_parser(code: str) -> Callable[[Dict[str, Any]], NormalizedUpdate]:
    # FedEx/DHL 은 같은 camelCase 필드를 쓴다
    def _parse(payload: Dict[str, Any]) -> NormalizedUpdate:
        return _build(
            code,
            payload,
            number=payload.get("trackingNumber"),
            status=payload.get("status"),
            location=payload.get("location"),
            description=payload.get("statusDescription"),
            occurred_at=_first(payload, "eventTimestamp", "timestamp"),
            estimated=payload.get("estimatedDeliveryDate"),
            actual=payload.get("actualDeliveryDate"),
        )

    _parse.__name__ = f"parse_{code.lower()}"
    return _parse


def parse_delhivery(payload: Dict[str, Any]) -> NormalizedUpdate:
    shipment = payload.get("Shipment") or payload
    status = shipment.get("Status") or {}
    if not isinstance(status, dict):
        status = {"Status": status}
    return _build(
        "DELHIVERY",
        payload,
        number=_first(shipment, "AWB", "waybill"),
        status=status.get("Status"),
        location=status.get("StatusLocation"),
        description=status.get("Instructions"),
        occurred_at=status.get("StatusDateTime"),
        estimated=shipment.get("ExpectedDeliveryDate"),
        actual=status.get("StatusDateTime") if str(status.get("Status", "")).lower() == "delivered" else None,
    )


def parse_trackingmore(payload: Dict[str, Any]) -> NormalizedUpdate:
    data = payload.get("data") or {}
    checkpoints = (data.get("origin_info") or {}).get("trackinfo") or []
    latest = checkpoints[0] if checkpoints else {}
    status = map_provider_status("TRACKINGMORE", data.get("delivery_status"))
    update = _build(
        "TRACKINGMORE",
        payload,
        number=data.get("tracking_number"),
        status=data.get("delivery_status"),
        location=latest.get("location"),
        description=latest.get("tracking_detail"),
        occurred_at=_first(data, "lastest_checkpoint_time") or latest.get("checkpoint_date"),
        estimated=data.get("scheduled_delivery_date"),
        actual=data.get("lastest_checkpoint_time") if status == "delivered" else None,
    )
    update.carrier_code = str(data.get("courier_code") or "TRACKINGMORE").upper().replace("-", "_")
    return update


def parse_generic(code: str, payload: Dict[str, Any]) -> NormalizedUpdate:
    return _build(
        code,
        payload,
        number=_first(payload, "trackingNumber", "tracking_number", "awb", "waybill_number"),
        status=payload.get("status"),
        location=_first(payload, "location", "current_location"),
        description=_first(payload, "description", "statusDescription", "status_description"),
        occurred_at=_first(payload, "timestamp", "eventTimestamp", "event_time"),
        estimated=_first(payload, "estimatedDelivery", "estimatedDeliveryDate", "estimated_delivery_date"),
        actual=_first(payload, "actualDelivery", "actualDeliveryDate", "actual_delivery_date"),
    )


PARSERS: Dict[str, Callable[[Dict[str, Any]], NormalizedUpdate]] = {
    "BLUE_DART": parse_blue_dart,
    "DTDC": parse_dtdc,
    "FEDEX": _camel_case_parser("FEDEX"),
    "DHL": _camel_case_parser("DHL"),
    "DELHIVERY": parse_delhivery,
    "TRACKINGMORE": parse_trackingmore,
}


def normalize(carrier_code: str, payload: Dict[str, Any]) -> NormalizedUpdate:
    """
    URL 경로의 택배사 코드로 파서를 골라 정규화.
    모르는 택배사는 범용 필드명으로 시도한다.
    """
    code = normalize_code(carrier_code)
    parser = PARSERS.get(code)
    if parser is None:
        return parse_generic(code, payload or {})
    return parser(payload or {})


# ─────────────────────────────────────────────────────────────
# 서명 검증 (택배사별 공유 비밀키 HMAC-SHA256)
# ─────────────────────────────────────────────────────────────
def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    if not secret or not signature:
        return False
    expected = compute_signature(secret, body or b"")
    given = signature.strip()
    if given.startswith("sha256="):
        given = given[len("sha256="):]
    return hmac.compare_digest(expected, given)
