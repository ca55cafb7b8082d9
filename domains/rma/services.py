from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from domains.shipments.models import ShipmentDirection

from .exceptions import CaseNotFound
from .models import CaseSequence, RMACase
from .sla import case_metrics, recompute_sla
from .state_machine import allowed_actions, record_history
from .workflow import engine

logger = logging.getLogger(__name__)

# 접수 후 수정 가능한 필드 (상태/배정/배송은 전용 액션으로만 변경)
EDITABLE_FIELDS = (
    "site_name",
    "product_name",
    "product_part_number",
    "serial_number",
    "call_log_number",
    "defective_part_number",
    "defective_part_name",
    "defective_serial_number",
    "replacement_part_number",
    "replacement_part_name",
    "replacement_serial_number",
    "symptoms",
    "notes",
    "priority",
    "warranty_status",
    "estimated_cost",
)


# ─────────────────────────────────────────────────────────────────────────────
# 케이스 번호: RMA-<연도>-<연도별 순번 3자리>
# ─────────────────────────────────────────────────────────────────────────────
@transaction.atomic
def next_case_number(year: Optional[int] = None) -> str:
    year = year or timezone.now().year
    try:
        with transaction.atomic():
            seq, _ = CaseSequence.objects.select_for_update().get_or_create(year=year)
    except IntegrityError:
        # 동시에 같은 연도 행을 만든 경우
        seq = CaseSequence.objects.select_for_update().get(year=year)
    seq.last_value += 1
    seq.save(update_fields=["last_value"])
    return f"RMA-{year}-{seq.last_value:03d}"


# ─────────────────────────────────────────────────────────────────────────────
# 접수 / 수정
# ─────────────────────────────────────────────────────────────────────────────
@transaction.atomic
def create_case(data: Dict[str, Any], *, user=None, actor: str = "") -> RMACase:
    """
    케이스 접수.
    - 케이스 번호 발급
    - SLA 레코드 생성
    - 'created' 이력
    - 배정: 입력값이 있으면 그대로, 없으면 규칙 기반 자동 배정
    """
    fields = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
    raised_at = data.get("raised_at") or timezone.now()
    case = RMACase.objects.create(
        case_number=next_case_number(raised_at.year),
        raised_at=raised_at,
        created_by=user if getattr(user, "is_authenticated", False) else None,
        **fields,
    )
    recompute_sla(case)
    record_history(case, "created", actor=actor, to_status=case.status)
    logger.info("RMA %s created (priority=%s)", case.case_number, case.priority)

    case = engine.assign(case.pk, data.get("assigned_to") or None, actor=actor or "system")
    return case


@transaction.atomic
def update_case(case_id, data: Dict[str, Any], *, actor: str = "") -> RMACase:
    try:
        case = RMACase.objects.select_for_update().get(pk=case_id)
    except RMACase.DoesNotExist:
        raise CaseNotFound(case_id)

    changed = []
    for name in EDITABLE_FIELDS:
        if name in data and getattr(case, name) != data[name]:
            setattr(case, name, data[name])
            changed.append(name)
    if not changed:
        return case

    case.save(update_fields=changed + ["updated_at"])
    record_history(
        case, "updated", actor=actor, note=", ".join(changed),
        from_status=case.status, to_status=case.status,
    )
    if "priority" in changed:
        recompute_sla(case)
    return case


def get_case(case_id) -> RMACase:
    case = (
        RMACase.objects.select_related("sla")
        .prefetch_related("shipments", "history")
        .filter(pk=case_id)
        .first()
    )
    if case is None:
        raise CaseNotFound(case_id)
    return case


# ─────────────────────────────────────────────────────────────────────────────
# 조회용 조립
# ─────────────────────────────────────────────────────────────────────────────
def _leg(case: RMACase, direction: str) -> Optional[Dict[str, Any]]:
    from domains.shipments.serializers import ShipmentSerializer, TrackingEventSerializer

    shipment = case.shipment(direction)
    if shipment is None:
        return None
    data = dict(ShipmentSerializer(shipment).data)
    data["events"] = TrackingEventSerializer(shipment.events.all(), many=True).data
    return data


def tracking_view(case: RMACase) -> Dict[str, Any]:
    """케이스의 outbound/return 배송 스냅샷 + 이벤트 타임라인 + 배송 SLA."""
    sla = recompute_sla(case) if not hasattr(case, "sla") else case.sla
    return {
        "case_id": str(case.id),
        "case_number": case.case_number,
        "status": case.status,
        "priority": case.priority,
        "outbound": _leg(case, ShipmentDirection.OUTBOUND),
        "return": _leg(case, ShipmentDirection.RETURN),
        "sla": {
            "target_delivery_days": sla.target_delivery_days,
            "outbound_delivery_days": sla.outbound_delivery_days,
            "return_delivery_days": sla.return_delivery_days,
            "outbound_breached": sla.outbound_breached,
            "return_breached": sla.return_breached,
            "sla_breached": sla.sla_breached,
            "breach_reason": sla.breach_reason,
        },
    }


def case_summary(case: RMACase) -> Dict[str, Any]:
    """상세 응답에 붙이는 파생 정보 (진행률/위험도/가능한 액션)."""
    metrics = case_metrics(case)
    metrics["allowed_actions"] = [] if case.is_terminal else allowed_actions(case.status)
    return metrics
