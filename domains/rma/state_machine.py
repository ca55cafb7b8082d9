# domains/rma/state_machine.py
"""
RMA 케이스 상태 전이.

모든 전이는 명시적 액션으로만 일어난다 (배송 상태로 추론하지 않음).
액션 1건 = 트랜잭션 1건: 케이스 행 잠금 → 검증 → 부수효과 → 상태 변경 → 이력 append → SLA 재계산.
검증 실패 시 InvalidTransition 을 던지고 케이스는 그대로 남는다.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Optional, Tuple

from django.db import transaction
from django.utils import timezone

from domains.shipments.adapters.base import InvalidFormat
from domains.shipments.adapters.provider import CarrierRegistry
from domains.shipments.models import EventSource, Shipment, ShipmentDirection, ShipmentStatus
from domains.shipments.services import apply_tracking_update

from .exceptions import CaseNotFound, InvalidTransition
from .models import CaseStatus, RMACase, WorkflowHistory
from .sla import recompute_sla

logger = logging.getLogger(__name__)

S = CaseStatus

PRIMARY_PATH = (
    S.UNDER_REVIEW,
    S.SENT_TO_VENDOR,
    S.VENDOR_APPROVED,
    S.REPLACEMENT_SHIPPED,
    S.REPLACEMENT_RECEIVED,
    S.INSTALLATION_COMPLETE,
    S.FAULTY_PART_RETURNED,
    S.VENDOR_CONFIRMED_RETURN,
    S.COMPLETED,
)

# action → (허용되는 현재 상태, 다음 상태)
TRANSITIONS: Dict[str, Tuple[FrozenSet[str], Optional[str]]] = {
    "submit_to_vendor": (frozenset({S.UNDER_REVIEW}), S.SENT_TO_VENDOR),
    "record_approval": (frozenset({S.SENT_TO_VENDOR}), S.VENDOR_APPROVED),
    "record_rejection": (frozenset({S.SENT_TO_VENDOR}), S.REJECTED),
    "record_outbound_shipment": (frozenset({S.VENDOR_APPROVED}), S.REPLACEMENT_SHIPPED),
    "confirm_outbound_delivery": (frozenset({S.REPLACEMENT_SHIPPED}), S.REPLACEMENT_RECEIVED),
    "confirm_installation": (frozenset({S.REPLACEMENT_RECEIVED}), S.INSTALLATION_COMPLETE),
    "initiate_return": (frozenset({S.INSTALLATION_COMPLETE}), S.FAULTY_PART_RETURNED),
    "confirm_return_delivery": (frozenset({S.FAULTY_PART_RETURNED}), S.VENDOR_CONFIRMED_RETURN),
    "complete": (frozenset({S.VENDOR_CONFIRMED_RETURN}), S.COMPLETED),
    # 다음 상태는 현재 상태에 따라 결정 (주 경로상 한 단계)
    "escalate": (frozenset(PRIMARY_PATH[:-1]), None),
}

ACTIONS = tuple(TRANSITIONS)


def next_primary_state(status: str) -> Optional[str]:
    if status not in PRIMARY_PATH:
        return None
    idx = PRIMARY_PATH.index(status)
    return PRIMARY_PATH[idx + 1] if idx + 1 < len(PRIMARY_PATH) else None


def allowed_actions(status: str):
    return [name for name, (sources, _) in TRANSITIONS.items() if status in sources]


def record_history(case: RMACase, action: str, *, actor: str = "", note: str = "",
                   from_status: str = "", to_status: str = "") -> WorkflowHistory:
    return WorkflowHistory.objects.create(
        case=case,
        action=action,
        actor=actor or "system",
        from_status=from_status,
        to_status=to_status,
        note=note or "",
    )


# ─────────────────────────────────────────────────────────────
# 액션별 부수효과 (배송 레코드)
# ─────────────────────────────────────────────────────────────
_SHIPMENT_FIELDS = (
    "service_level",
    "estimated_delivery",
    "weight_kg",
    "length_cm",
    "width_cm",
    "height_cm",
    "insured_value",
    "requires_signature",
)


def _upsert_shipment(case: RMACase, direction: str, data: Dict[str, Any], *, required: bool) -> Optional[Shipment]:
    carrier_code = (data.get("carrier_code") or data.get("carrier") or "").strip()
    tracking_number = (data.get("tracking_number") or "").strip()
    if not (carrier_code and tracking_number):
        if required:
            raise InvalidFormat("carrier_code and tracking_number are required")
        return None

    config = CarrierRegistry.load().get(carrier_code)
    if not config.validate_tracking_number(tracking_number):
        raise InvalidFormat(
            f"Invalid tracking number format for {config.display_name or config.code}",
            carrier_code=config.code,
            tracking_number=tracking_number,
        )

    defaults = {
        "carrier_code": config.code,
        "tracking_number": tracking_number,
        "status": ShipmentStatus.PENDING,
        "shipped_at": data.get("shipped_at") or timezone.now(),
        "last_updated": timezone.now(),
        "last_error": "",
    }
    for name in _SHIPMENT_FIELDS:
        if data.get(name) not in (None, ""):
            defaults[name] = data[name]
    shipment, _ = Shipment.objects.update_or_create(case=case, direction=direction, defaults=defaults)

    # 등록 직후 첫 조회는 커밋 후 워커에서
    from domains.shipments.tasks import refresh_case_tracking

    case_id = str(case.id)
    transaction.on_commit(lambda: refresh_case_tracking.delay(case_id))
    return shipment


def _confirm_delivery(case: RMACase, direction: str, data: Dict[str, Any], actor: str) -> None:
    shipment = Shipment.objects.filter(case=case, direction=direction).first()
    if shipment is None or shipment.status == ShipmentStatus.DELIVERED:
        return
    delivered_at = data.get("actual_delivery") or timezone.now()
    apply_tracking_update(
        shipment.pk,
        status=ShipmentStatus.DELIVERED,
        source=EventSource.MANUAL,
        occurred_at=delivered_at,
        actual_delivery=delivered_at,
        description=data.get("note") or f"Delivery confirmed by {actor or 'operator'}",
        metadata={"actor": actor},
    )


def _on_outbound_shipment(case, data, actor):
    _upsert_shipment(case, ShipmentDirection.OUTBOUND, data, required=True)


def _on_outbound_delivery(case, data, actor):
    _confirm_delivery(case, ShipmentDirection.OUTBOUND, data, actor)


def _on_initiate_return(case, data, actor):
    _upsert_shipment(case, ShipmentDirection.RETURN, data, required=False)


def _on_return_delivery(case, data, actor):
    _confirm_delivery(case, ShipmentDirection.RETURN, data, actor)


def _on_escalate(case, data, actor):
    case.escalated_at = timezone.now()
    case.escalation_reason = (data.get("reason") or "")[:255]
    case.escalation_count += 1


_HOOKS: Dict[str, Callable[[RMACase, Dict[str, Any], str], None]] = {
    "record_outbound_shipment": _on_outbound_shipment,
    "confirm_outbound_delivery": _on_outbound_delivery,
    "initiate_return": _on_initiate_return,
    "confirm_return_delivery": _on_return_delivery,
    "escalate": _on_escalate,
}


# ─────────────────────────────────────────────────────────────
# 진입점
# ─────────────────────────────────────────────────────────────
@transaction.atomic
def perform(case_id, action: str, *, actor: str = "", note: str = "",
            data: Optional[Dict[str, Any]] = None,
            expected_status: Optional[str] = None,
            unchanged_since: Optional[datetime] = None) -> RMACase:
    """
    expected_status / unchanged_since 는 잠금 이후 재검증용.
    조회 시점 이후 상태가 바뀌었으면(다른 상태이거나 status_changed_at 이 더 최근) InvalidTransition.
    """
    try:
        case = RMACase.objects.select_for_update().get(pk=case_id)
    except RMACase.DoesNotExist:
        raise CaseNotFound(case_id)

    if action not in TRANSITIONS:
        raise InvalidTransition(action, case.status, f"Unknown action: {action}")
    sources, target = TRANSITIONS[action]
    if case.status not in sources:
        raise InvalidTransition(action, case.status)
    if expected_status is not None and case.status != expected_status:
        raise InvalidTransition(
            action, case.status, f"Case moved from {expected_status} to {case.status}"
        )
    if unchanged_since is not None and case.status_changed_at > unchanged_since:
        raise InvalidTransition(
            action, case.status, f"Case changed status at {case.status_changed_at.isoformat()}"
        )
    target = target or next_primary_state(case.status)

    data = dict(data or {})
    hook = _HOOKS.get(action)
    if hook is not None:
        hook(case, data, actor)

    prev = case.status
    case.status = target
    case.status_changed_at = timezone.now()
    case.save()

    record_history(
        case,
        action,
        actor=actor,
        note=note or data.get("reason") or data.get("note") or "",
        from_status=prev,
        to_status=target,
    )
    recompute_sla(case)

    logger.info("RMA %s: %s (%s -> %s) by %s", case.case_number, action, prev, target, actor or "system")
    _queue_status_changed(case, action, prev, actor)
    return case


def _queue_status_changed(case: RMACase, action: str, prev: str, actor: str) -> None:
    from domains.shipments.tasks import notify

    payload = {
        "case_id": str(case.id),
        "case_number": case.case_number,
        "action": action,
        "previous_status": prev,
        "status": case.status,
        "actor": actor,
        "assigned_to": case.assigned_to,
    }
    kind = "escalation" if action == "escalate" else "status_changed"
    transaction.on_commit(lambda: notify.delay(kind, payload))


def submit_to_vendor(case_id, *, actor="", note=""):
    return perform(case_id, "submit_to_vendor", actor=actor, note=note)


def record_approval(case_id, *, actor="", note=""):
    return perform(case_id, "record_approval", actor=actor, note=note)


def record_rejection(case_id, *, actor="", note=""):
    return perform(case_id, "record_rejection", actor=actor, note=note)


def record_outbound_shipment(case_id, *, carrier_code: str, tracking_number: str, actor="", note="", **extra):
    data = dict(extra, carrier_code=carrier_code, tracking_number=tracking_number)
    return perform(case_id, "record_outbound_shipment", actor=actor, note=note, data=data)


def confirm_outbound_delivery(case_id, *, actor="", note="", actual_delivery=None):
    return perform(
        case_id, "confirm_outbound_delivery", actor=actor, note=note,
        data={"actual_delivery": actual_delivery},
    )


def confirm_installation(case_id, *, actor="", note=""):
    return perform(case_id, "confirm_installation", actor=actor, note=note)


def initiate_return(case_id, *, actor="", note="", carrier_code: str = "", tracking_number: str = "", **extra):
    data = dict(extra, carrier_code=carrier_code, tracking_number=tracking_number)
    return perform(case_id, "initiate_return", actor=actor, note=note, data=data)


def confirm_return_delivery(case_id, *, actor="", note="", actual_delivery=None):
    return perform(
        case_id, "confirm_return_delivery", actor=actor, note=note,
        data={"actual_delivery": actual_delivery},
    )


def complete(case_id, *, actor="", note=""):
    return perform(case_id, "complete", actor=actor, note=note)


def escalate(case_id, *, reason: str, actor: str = "system",
             expected_status: Optional[str] = None, unchanged_since: Optional[datetime] = None):
    return perform(
        case_id, "escalate", actor=actor, note=reason, data={"reason": reason},
        expected_status=expected_status, unchanged_since=unchanged_since,
    )
