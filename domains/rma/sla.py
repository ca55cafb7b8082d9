# domains/rma/sla.py
"""
SLA 계산.

- 케이스 전체 SLA: 우선순위별 목표 시간(시간 단위, 접수 시각 기준)
- 배송 구간 SLA: 발송일 → 배송완료일, 목표 일수(기본 3일). 위반 플래그는 단조(한 번 True 면 유지)
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from django.apps import apps
from django.conf import settings
from django.utils import timezone

from .rules import DEFAULT_SLA_HOURS, rules_store

logger = logging.getLogger(__name__)

DEFAULT_TARGET_DELIVERY_DAYS = 3

ON_TRACK = "on_track"
AT_RISK = "at_risk"
BREACHED = "breached"
AT_RISK_RATIO = 0.8

PROGRESS = {
    "under_review": 10,
    "sent_to_vendor": 20,
    "vendor_approved": 30,
    "replacement_shipped": 50,
    "replacement_received": 70,
    "installation_complete": 85,
    "faulty_part_returned": 90,
    "vendor_confirmed_return": 95,
    "completed": 100,
    "rejected": 0,
}

_LEG_LABEL = {"outbound": "Outbound", "return": "Return"}


def _record_model():
    return apps.get_model("rma", "SLARecord")


# ─────────────────────────────────────────────────────────────
# 순수 함수
# ─────────────────────────────────────────────────────────────
def sla_hours_table() -> Dict[str, int]:
    """현재 규칙 테이블의 우선순위별 SLA 시간."""
    table = dict(DEFAULT_SLA_HOURS)
    table.update(rules_store.current().sla_hours)
    return table


def target_delivery_days() -> int:
    return int(getattr(settings, "RMA_TARGET_DELIVERY_DAYS", DEFAULT_TARGET_DELIVERY_DAYS))


def target_hours(priority: str, table: Optional[Dict[str, int]] = None) -> int:
    table = table or sla_hours_table()
    return int(table.get(priority, table.get("Medium", DEFAULT_SLA_HOURS["Medium"])))


def compute_sla_status(priority: str, elapsed_hours: float, table: Optional[Dict[str, int]] = None) -> str:
    """경과 시간이 늘면 on_track → at_risk → breached 로만 움직인다."""
    target = target_hours(priority, table)
    if elapsed_hours > target:
        return BREACHED
    if elapsed_hours > target * AT_RISK_RATIO:
        return AT_RISK
    return ON_TRACK


def progress_percentage(status: str) -> int:
    return PROGRESS.get(status, 0)


def estimate_completion(status: str, elapsed_hours: float, now: Optional[datetime] = None) -> Optional[datetime]:
    """진행률/경과시간의 선형 외삽. 진행률 0(또는 100 이상)이면 추정하지 않는다."""
    progress = progress_percentage(status)
    if progress <= 0 or progress >= 100:
        return None
    per_hour = progress / max(elapsed_hours, 1)
    remaining_hours = (100 - progress) / per_hour
    return (now or timezone.now()) + timedelta(hours=remaining_hours)


def assess_risk(status: str, priority: str, elapsed_hours: float, table: Optional[Dict[str, int]] = None) -> str:
    sla_status = compute_sla_status(priority, elapsed_hours, table)
    progress = progress_percentage(status)
    if sla_status == BREACHED or (progress < 20 and elapsed_hours > 48):
        return "high"
    if sla_status == AT_RISK or (progress < 50 and elapsed_hours > 24):
        return "medium"
    return "low"


def delivery_days(shipped_at: datetime, delivered_at: datetime) -> int:
    """시작~완료 일수 (올림). 완료 시각이 시작보다 앞서면 0."""
    seconds = (delivered_at - shipped_at).total_seconds()
    return max(0, int(math.ceil(seconds / 86400)))


def elapsed_hours(case, now: Optional[datetime] = None) -> float:
    start = case.raised_at or case.created_at
    return max(((now or timezone.now()) - start).total_seconds() / 3600, 0.0)


# ─────────────────────────────────────────────────────────────
# SLA 레코드 갱신
# ─────────────────────────────────────────────────────────────
def compute_breach(record, direction: str, shipment) -> bool:
    """
    한 구간의 배송 일수를 기록하고 목표 초과 시 위반 처리.
    이미 위반된 구간은 되돌리지 않는다. 새로 위반되면 True.
    """
    if shipment is None or not (shipment.shipped_at and shipment.actual_delivery):
        return False

    if shipment.actual_delivery < shipment.shipped_at:
        logger.warning(
            "Case %s %s leg delivered (%s) before shipped_at (%s), counting 0 days",
            record.case_id, direction, shipment.actual_delivery.isoformat(), shipment.shipped_at.isoformat(),
        )
    days = delivery_days(shipment.shipped_at, shipment.actual_delivery)
    setattr(record, f"{direction}_delivery_days", days)

    flag = f"{direction}_breached"
    if getattr(record, flag) or days <= record.target_delivery_days:
        return False

    setattr(record, flag, True)
    reason = (
        f"{_LEG_LABEL.get(direction, direction.title())} delivery took {days} days, "
        f"exceeding target of {record.target_delivery_days} days"
    )
    record.breach_reason = f"{record.breach_reason}; {reason}" if record.breach_reason else reason
    record.sla_breached = True
    record.breached_at = record.breached_at or timezone.now()
    logger.warning("SLA breached for case %s: %s", record.case_id, reason)
    return True


def get_or_create_record(case):
    record, _ = _record_model().objects.get_or_create(
        case=case,
        defaults={
            "target_hours": target_hours(case.priority),
            "target_delivery_days": target_delivery_days(),
        },
    )
    return record


def recompute_sla(case) -> Any:
    """목표 시간 갱신 + 두 배송 구간 위반 재계산."""
    record = get_or_create_record(case)
    record.target_hours = target_hours(case.priority)
    for shipment in case.shipments.all():
        compute_breach(record, shipment.direction, shipment)
    record.save()
    return record


# ─────────────────────────────────────────────────────────────
# 대시보드/조회용
# ─────────────────────────────────────────────────────────────
def case_metrics(case, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or timezone.now()
    hours = elapsed_hours(case, now)
    table = sla_hours_table()
    sla_status = compute_sla_status(case.priority, hours, table)
    progress = progress_percentage(case.status)
    risk = assess_risk(case.status, case.priority, hours, table)
    eta = None if case.is_terminal else estimate_completion(case.status, hours, now)

    alerts: List[Dict[str, str]] = []
    if not case.is_terminal:
        if sla_status == BREACHED:
            alerts.append({"type": "sla_breach", "severity": "high"})
        if risk == "high":
            alerts.append({"type": "high_risk", "severity": "critical"})
        if progress < 10 and hours > 24:
            alerts.append({"type": "stagnant_progress", "severity": "medium"})

    return {
        "hours_elapsed": round(hours, 2),
        "sla_hours": target_hours(case.priority, table),
        "sla_status": sla_status,
        "progress_percentage": progress,
        "estimated_completion": eta,
        "risk_level": risk,
        "alerts": alerts,
    }


def check_overdue(cases: Iterable, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """
    경과 시간 기준 SLA 초과 케이스.
    목표의 2배를 넘으면 Critical, 아니면 Warning.
    """
    now = now or timezone.now()
    table = sla_hours_table()
    rows = []
    for case in cases:
        if case.is_terminal:
            continue
        hours = elapsed_hours(case, now)
        target = target_hours(case.priority, table)
        if hours <= target:
            continue
        rows.append(
            {
                "id": str(case.id),
                "case_number": case.case_number,
                "priority": case.priority,
                "status": case.status,
                "assigned_to": case.assigned_to,
                "sla_hours": target,
                "hours_elapsed": round(hours, 2),
                "severity": "Critical" if hours > target * 2 else "Warning",
            }
        )
    return rows
