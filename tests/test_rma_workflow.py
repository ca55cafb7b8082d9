# tests/test_rma_workflow.py
from datetime import timedelta

import pytest
from django.utils import timezone

from domains.rma import state_machine
from domains.rma.models import CaseStatus, RMACase
from domains.rma.rules import WorkflowRules, rules_store
from domains.rma.sla import sla_hours_table
from domains.rma.workflow import WorkflowEngine, engine
from domains.rma.exceptions import CaseNotFound, InvalidTransition
from tests.factories import create_case

pytestmark = pytest.mark.django_db


# ─────────────────────────────────────────────────────────────
# 규칙 테이블
# ─────────────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "priority, status, expected",
    [
        ("Critical", "under_review", "manager@company.com"),
        ("High", "vendor_approved", "senior-technician@company.com"),
        ("Medium", "under_review", "review-team@company.com"),
        ("Low", "vendor_approved", "logistics@company.com"),
        ("Low", "replacement_shipped", "default-technician@company.com"),
    ],
)
def test_assignee_precedence(priority, status, expected):
    assert WorkflowRules().assignee_for(priority, status) == expected


@pytest.mark.parametrize(
    "data",
    [
        {"sla_hours": {"Critical": 0}},
        {"sla_hours": {"High": "soon"}},
        {"sla_hours": {"High": 0.5}},
        {"escalation_hours": {"under_review": -5}},
        {"default_assignee": "   "},
    ],
)
def test_rules_from_dict_rejects_bad_values(data):
    with pytest.raises(ValueError):
        WorkflowRules.from_dict(data)


def test_rules_are_immutable():
    rules = WorkflowRules()
    with pytest.raises(TypeError):
        rules.sla_hours["Critical"] = 1


def test_replace_swaps_whole_table():
    rules_store.replace(
        WorkflowRules.from_dict({"sla_hours": {"Critical": 2}, "escalation_hours": {"under_review": 1}})
    )
    current = rules_store.current()
    assert current.sla_hours["Critical"] == 2
    assert current.sla_hours["Medium"] == 72
    assert dict(current.escalation_hours) == {"under_review": 1}
    assert sla_hours_table()["Critical"] == 2

    rules_store.reset()
    assert rules_store.current().sla_hours["Critical"] == 4


def test_rules_from_settings(settings):
    settings.RMA_DEFAULT_ASSIGNEE = "desk@example.com"
    settings.RMA_ASSIGNMENT_BY_PRIORITY = {}
    rules_store.reset()
    assert rules_store.current().assignee_for("Critical", "completed") == "desk@example.com"


# ─────────────────────────────────────────────────────────────
# 배정
# ─────────────────────────────────────────────────────────────
def test_auto_assign_records_history(notifications, django_capture_on_commit_callbacks):
    case = create_case(priority="Critical")
    with django_capture_on_commit_callbacks(execute=True):
        case = engine.auto_assign(case.pk, actor="ops")

    assert case.assigned_to == "manager@company.com"
    assert case.assigned_at is not None
    entry = case.history.get(action="assign")
    assert entry.note == "Assigned to manager@company.com"
    assert entry.actor == "ops"
    assert notifications == [
        (
            "assignment",
            {
                "case_id": str(case.id),
                "case_number": case.case_number,
                "assigned_to": "manager@company.com",
                "priority": "Critical",
                "status": "under_review",
            },
        )
    ]


def test_explicit_reassign_notes_previous():
    case = create_case(assigned_to="old@example.com")
    case = engine.assign(case.pk, "new@example.com", actor="lead")
    assert case.assigned_to == "new@example.com"
    assert case.history.get().note == "Assigned to new@example.com (was old@example.com)"


def test_assign_missing_case():
    import uuid

    with pytest.raises(CaseNotFound):
        engine.assign(uuid.uuid4())


def test_injected_rules_are_used():
    rules = WorkflowRules.from_dict({"default_assignee": "bot@example.com", "assignment_by_priority": {},
                                     "assignment_by_status": {}})
    custom = WorkflowEngine(rules=lambda: rules)
    case = create_case(priority="Critical")
    assert custom.auto_assign(case.pk).assigned_to == "bot@example.com"


# ─────────────────────────────────────────────────────────────
# 자동 에스컬레이션
# ─────────────────────────────────────────────────────────────
def test_auto_escalate_moves_stale_cases_exactly_once():
    stale = create_case(status=CaseStatus.UNDER_REVIEW, status_hours_ago=50)
    fresh = create_case(status=CaseStatus.UNDER_REVIEW, status_hours_ago=10)
    shipped = create_case(status=CaseStatus.REPLACEMENT_SHIPPED, status_hours_ago=500)

    result = engine.auto_escalate()

    assert result["checked"] == 1
    assert result["escalated"] == [stale.case_number]
    assert result["failed"] == []

    stale.refresh_from_db()
    assert stale.status == CaseStatus.SENT_TO_VENDOR
    assert stale.escalation_count == 1
    assert stale.escalation_reason == "Auto-escalated after 50 hours in Under Review"

    # 상태 체류 시간이 초기화되었으므로 재실행해도 다시 올리지 않는다
    again = engine.auto_escalate()
    assert again["escalated"] == []
    stale.refresh_from_db()
    assert stale.escalation_count == 1

    for other in (fresh, shipped):
        before = other.status
        other.refresh_from_db()
        assert other.status == before


def test_auto_escalate_isolates_failures(monkeypatch):
    a = create_case(status=CaseStatus.VENDOR_APPROVED, status_hours_ago=30)
    b = create_case(status=CaseStatus.VENDOR_APPROVED, status_hours_ago=40)

    real = state_machine.escalate

    def flaky(case_id, **kw):
        if case_id == b.pk:
            raise RuntimeError("boom")
        return real(case_id, **kw)

    monkeypatch.setattr(state_machine, "escalate", flaky)
    result = engine.auto_escalate()

    assert result["escalated"] == [a.case_number]
    assert result["failed"] == [b.case_number]
    assert RMACase.objects.get(pk=a.pk).status == CaseStatus.REPLACEMENT_SHIPPED
    assert RMACase.objects.get(pk=b.pk).status == CaseStatus.VENDOR_APPROVED


def test_auto_escalate_skips_case_moved_after_selection(monkeypatch):
    case = create_case(status=CaseStatus.UNDER_REVIEW, status_hours_ago=50)
    select = WorkflowEngine.escalation_candidates

    def select_then_move(self, now=None):
        picked = select(self, now)
        # 조회 직후 담당자가 먼저 진행시킴
        state_machine.submit_to_vendor(case.pk, actor="tech")
        return picked

    monkeypatch.setattr(WorkflowEngine, "escalation_candidates", select_then_move)
    result = engine.auto_escalate()

    assert result == {"checked": 1, "escalated": [], "failed": []}
    case.refresh_from_db()
    assert case.status == CaseStatus.SENT_TO_VENDOR
    assert case.escalation_count == 0
    assert list(case.history.values_list("action", flat=True)) == ["submit_to_vendor"]


def test_escalate_rechecks_status_under_lock():
    case = create_case(status=CaseStatus.SENT_TO_VENDOR, status_hours_ago=1)

    with pytest.raises(InvalidTransition):
        state_machine.escalate(case.pk, reason="late", expected_status=CaseStatus.UNDER_REVIEW)
    with pytest.raises(InvalidTransition):
        state_machine.escalate(
            case.pk, reason="late", unchanged_since=timezone.now() - timedelta(hours=72)
        )

    case.refresh_from_db()
    assert case.status == CaseStatus.SENT_TO_VENDOR
    assert case.escalation_count == 0

    case = state_machine.escalate(
        case.pk,
        reason="late",
        expected_status=CaseStatus.SENT_TO_VENDOR,
        unchanged_since=timezone.now() - timedelta(minutes=30),
    )
    assert case.status == CaseStatus.VENDOR_APPROVED


def test_escalation_thresholds_follow_replaced_rules():
    case = create_case(status=CaseStatus.UNDER_REVIEW, status_hours_ago=5)
    assert engine.auto_escalate()["escalated"] == []

    rules_store.replace(WorkflowRules.from_dict({"escalation_hours": {"under_review": 4}}))
    assert engine.auto_escalate()["escalated"] == [case.case_number]


# ─────────────────────────────────────────────────────────────
# 관리자 액션
# ─────────────────────────────────────────────────────────────
def test_process_dispatches_actions():
    case = create_case()
    case = engine.process(case.pk, "submit_to_vendor", {"note": "sent"}, actor="tech")
    assert case.status == CaseStatus.SENT_TO_VENDOR
    assert case.history.get(action="submit_to_vendor").note == "sent"

    case = engine.process(case.pk, "escalate", {}, actor="tech")
    assert case.status == CaseStatus.VENDOR_APPROVED
    assert case.escalation_reason == "Manual escalation"

    case = engine.process(case.pk, "assign", {"assignee": "x@example.com"}, actor="tech")
    assert case.assigned_to == "x@example.com"


def test_process_unknown_action_and_case():
    import uuid

    case = create_case()
    with pytest.raises(InvalidTransition):
        engine.process(case.pk, "launch")
    with pytest.raises(CaseNotFound):
        engine.process(uuid.uuid4(), "launch")


def test_sla_breaches_and_overdue_queries():
    breached = create_case(priority="Critical", raised_hours_ago=12)
    breached.sla.sla_breached = True
    breached.sla.save()
    late = create_case(priority="High", raised_hours_ago=30)
    create_case(priority="Low")

    assert list(engine.sla_breaches()) == [breached]
    rows = engine.overdue()
    assert [r["case_number"] for r in rows] == [late.case_number, breached.case_number]
