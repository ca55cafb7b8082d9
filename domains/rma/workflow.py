# domains/rma/workflow.py
"""
워크플로 엔진: 자동 배정, 자동 에스컬레이션, 관리자 액션 처리.

규칙은 생성 시 주입받는다(기본값은 rules_store). 상태 변경은 모두 state_machine 을 거친다.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from django.db import transaction
from django.utils import timezone

from . import state_machine
from .exceptions import CaseNotFound, InvalidTransition
from .models import CaseStatus, RMACase, TERMINAL_CASE_STATUSES
from .rules import WorkflowRules, rules_store
from .sla import check_overdue

logger = logging.getLogger(__name__)


class WorkflowEngine:
    def __init__(self, rules: Optional[Callable[[], WorkflowRules]] = None):
        self._rules = rules or rules_store.current

    @property
    def rules(self) -> WorkflowRules:
        return self._rules()

    # ─────────────────────────────────────────────────────────
    # 배정
    # ─────────────────────────────────────────────────────────
    @transaction.atomic
    def assign(self, case_id, assignee: Optional[str] = None, *, actor: str = "system") -> RMACase:
        """assignee 가 없으면 규칙(우선순위 → 상태 → 기본값)으로 결정."""
        try:
            case = RMACase.objects.select_for_update().get(pk=case_id)
        except RMACase.DoesNotExist:
            raise CaseNotFound(case_id)

        target = (assignee or "").strip() or self.rules.assignee_for(case.priority, case.status)
        previous = case.assigned_to
        case.assigned_to = target
        case.assigned_at = timezone.now()
        case.save(update_fields=["assigned_to", "assigned_at", "updated_at"])

        state_machine.record_history(
            case,
            "assign",
            actor=actor,
            note=f"Assigned to {target}" + (f" (was {previous})" if previous else ""),
            from_status=case.status,
            to_status=case.status,
        )
        logger.info("RMA %s assigned to %s by %s", case.case_number, target, actor)

        from domains.shipments.tasks import notify

        payload = {
            "case_id": str(case.id),
            "case_number": case.case_number,
            "assigned_to": target,
            "priority": case.priority,
            "status": case.status,
        }
        transaction.on_commit(lambda: notify.delay("assignment", payload))
        return case

    def auto_assign(self, case_id, *, actor: str = "system") -> RMACase:
        return self.assign(case_id, None, actor=actor)

    # ─────────────────────────────────────────────────────────
    # 에스컬레이션
    # ─────────────────────────────────────────────────────────
    def escalation_candidates(self, now: Optional[datetime] = None) -> List[RMACase]:
        now = now or timezone.now()
        rules = self.rules
        out = []
        qs = RMACase.objects.exclude(status__in=TERMINAL_CASE_STATUSES).filter(
            status__in=list(rules.escalation_hours)
        )
        for case in qs.order_by("status_changed_at"):
            threshold = rules.escalation_threshold(case.status)
            hours = (now - case.status_changed_at).total_seconds() / 3600
            if threshold is not None and hours > threshold:
                out.append(case)
        return out

    def auto_escalate(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        상태 체류 시간이 임계치를 넘은 케이스를 한 단계 진행시킨다.
        케이스별로 격리: 한 건의 실패가 나머지를 막지 않는다.
        """
        now = now or timezone.now()
        rules = self.rules
        escalated: List[str] = []
        failed: List[str] = []
        candidates = self.escalation_candidates(now)

        for case in candidates:
            hours = int((now - case.status_changed_at).total_seconds() // 3600)
            reason = f"Auto-escalated after {hours} hours in {CaseStatus(case.status).label}"
            # 잠금 후에도 같은 상태로 임계치 이상 머물러 있어야 진행
            cutoff = now - timedelta(hours=rules.escalation_threshold(case.status) or 0)
            try:
                state_machine.escalate(
                    case.id,
                    reason=reason,
                    actor="system",
                    expected_status=case.status,
                    unchanged_since=cutoff,
                )
            except (InvalidTransition, CaseNotFound) as e:
                # 다른 경로로 이미 상태가 바뀐 경우
                logger.info("Skip escalation of %s: %s", case.case_number, e)
                continue
            except Exception:
                logger.exception("Auto escalation failed for %s", case.case_number)
                failed.append(case.case_number)
                continue
            escalated.append(case.case_number)

        if escalated or failed:
            logger.info("Auto escalation: %s escalated, %s failed", len(escalated), len(failed))
        return {"checked": len(candidates), "escalated": escalated, "failed": failed}

    # ─────────────────────────────────────────────────────────
    # 관리자 액션
    # ─────────────────────────────────────────────────────────
    def process(self, case_id, action: str, data: Optional[Dict[str, Any]] = None,
                actor: str = "") -> RMACase:
        data = dict(data or {})
        note = data.pop("note", "") or ""

        if action == "assign":
            return self.assign(case_id, data.get("assignee"), actor=actor or "system")
        if action == "escalate":
            return state_machine.escalate(
                case_id,
                reason=data.get("reason") or note or "Manual escalation",
                actor=actor or "system",
            )
        if action in state_machine.TRANSITIONS:
            return state_machine.perform(case_id, action, actor=actor, note=note, data=data)

        if not RMACase.objects.filter(pk=case_id).exists():
            raise CaseNotFound(case_id)
        status = RMACase.objects.values_list("status", flat=True).get(pk=case_id)
        raise InvalidTransition(action, status, f"Unknown action: {action}")

    # ─────────────────────────────────────────────────────────
    # 조회
    # ─────────────────────────────────────────────────────────
    def sla_breaches(self):
        """배송 구간 SLA 위반 케이스."""
        return (
            RMACase.objects.filter(sla__sla_breached=True)
            .select_related("sla")
            .order_by("-sla__breached_at")
        )

    def overdue(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        cases = RMACase.objects.exclude(status__in=TERMINAL_CASE_STATUSES)
        rows = check_overdue(cases, now)
        rows.sort(key=lambda r: r["hours_elapsed"], reverse=True)
        return rows


engine = WorkflowEngine()
