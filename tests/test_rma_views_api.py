# tests/test_rma_views_api.py
import re
import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from domains.rma.models import CaseStatus, RMACase
from domains.rma.rules import rules_store
from tests.factories import create_case, create_shipment

pytestmark = pytest.mark.django_db

BASE = "/api/v1"


def _payload(**extra):
    data = {
        "site_name": "PVR Andheri",
        "product_name": "Projector X1",
        "serial_number": "SN-0001",
        "symptoms": "No image",
        "priority": "Medium",
    }
    data.update(extra)
    return data


# ─────────────────────────────────────────────────────────────
# 케이스 접수/조회
# ─────────────────────────────────────────────────────────────
def test_requires_authentication(api_client):
    r = api_client.get(f"{BASE}/rma/")
    assert r.status_code in (401, 403)


def test_create_case_issues_number_and_assigns(auth_client):
    r = auth_client.post(f"{BASE}/rma/", _payload(), format="json")
    assert r.status_code == 201, r.content

    body = r.json()
    year = timezone.now().year
    assert re.fullmatch(rf"RMA-{year}-001", body["case_number"])
    assert body["status"] == "under_review"
    assert body["assigned_to"] == "review-team@company.com"
    assert body["sla"]["target_hours"] == 72
    assert [h["action"] for h in body["history"]] == ["created", "assign"]
    assert "submit_to_vendor" in body["metrics"]["allowed_actions"]

    r2 = auth_client.post(f"{BASE}/rma/", _payload(serial_number="SN-0002"), format="json")
    assert r2.json()["case_number"] == f"RMA-{year}-002"


def test_create_case_with_explicit_assignee(auth_client):
    r = auth_client.post(
        f"{BASE}/rma/", _payload(priority="Critical", assigned_to="lead@example.com"), format="json"
    )
    assert r.status_code == 201
    assert r.json()["assigned_to"] == "lead@example.com"


def test_create_case_validation(auth_client):
    r = auth_client.post(f"{BASE}/rma/", {"site_name": "x"}, format="json")
    assert r.status_code == 400
    assert "serial_number" in r.json()

    r = auth_client.post(f"{BASE}/rma/", _payload(estimated_cost="-1"), format="json")
    assert r.status_code == 400


def test_list_filters_and_search(auth_client):
    hit = create_case(priority="Critical", site_name="INOX Pune")
    create_case(priority="Low", site_name="PVR Delhi")

    r = auth_client.get(f"{BASE}/rma/", {"priority": "Critical"})
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 1
    assert body["results"][0]["case_number"] == hit.case_number
    assert body["results"][0]["sla_breached"] is False

    r = auth_client.get(f"{BASE}/rma/", {"search": "delhi"})
    assert r.json()["count"] == 1


def test_detail_patch_and_history(auth_client):
    case = create_case(priority="Low")

    r = auth_client.patch(f"{BASE}/rma/{case.pk}/", {"priority": "High", "notes": "call back"}, format="json")
    assert r.status_code == 200
    body = r.json()
    assert body["priority"] == "High"
    assert body["sla"]["target_hours"] == 24

    r = auth_client.get(f"{BASE}/rma/{case.pk}/history/")
    assert r.status_code == 200
    assert r.json()[-1]["action"] == "updated"


def test_detail_unknown_case_is_404(auth_client):
    r = auth_client.get(f"{BASE}/rma/{uuid.uuid4()}/")
    assert r.status_code == 404


# ─────────────────────────────────────────────────────────────
# 워크플로 액션
# ─────────────────────────────────────────────────────────────
def test_process_happy_path_to_shipment(auth_client, blue_dart, user):
    case = create_case(status=CaseStatus.VENDOR_APPROVED)

    r = auth_client.post(
        f"{BASE}/workflow/process/{case.pk}/",
        {
            "action": "record_outbound_shipment",
            "note": "Dispatched",
            "shipment": {"carrier": "Blue Dart", "tracking_number": "BD123456789IN"},
        },
        format="json",
    )
    assert r.status_code == 200, r.content
    body = r.json()
    assert body["status"] == "replacement_shipped"
    out = body["shipments"][0]
    assert out["carrier_code"] == "BLUE_DART"
    assert out["tracking_url"] == "https://www.bluedart.com/track/BD123456789IN"
    assert body["history"][-1]["actor"] == user.email


def test_process_invalid_transition_is_409(auth_client):
    case = create_case()
    r = auth_client.post(f"{BASE}/workflow/process/{case.pk}/", {"action": "complete"}, format="json")
    assert r.status_code == 409
    assert r.json()["current_status"] == "under_review"
    assert RMACase.objects.get(pk=case.pk).status == CaseStatus.UNDER_REVIEW


def test_process_unknown_case_is_404(auth_client):
    r = auth_client.post(
        f"{BASE}/workflow/process/{uuid.uuid4()}/", {"action": "submit_to_vendor"}, format="json"
    )
    assert r.status_code == 404


def test_process_bad_input_is_400(auth_client, blue_dart):
    case = create_case(status=CaseStatus.VENDOR_APPROVED)

    r = auth_client.post(f"{BASE}/workflow/process/{case.pk}/", {"action": "teleport"}, format="json")
    assert r.status_code == 400

    r = auth_client.post(
        f"{BASE}/workflow/process/{case.pk}/",
        {"action": "record_outbound_shipment", "shipment": {"carrier": "BLUE_DART", "tracking_number": "42"}},
        format="json",
    )
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_tracking_number"
    assert RMACase.objects.get(pk=case.pk).status == CaseStatus.VENDOR_APPROVED

    r = auth_client.post(
        f"{BASE}/workflow/process/{case.pk}/",
        {"action": "record_outbound_shipment", "shipment": {"carrier": "PIGEON", "tracking_number": "42"}},
        format="json",
    )
    assert r.status_code == 400
    assert r.json()["code"] == "unknown_carrier"


def test_assign_endpoint(auth_client):
    case = create_case(priority="High")
    r = auth_client.post(f"{BASE}/workflow/assign/{case.pk}/", {}, format="json")
    assert r.status_code == 200
    assert r.json()["assigned_to"] == "senior-technician@company.com"

    r = auth_client.post(f"{BASE}/workflow/assign/{case.pk}/", {"assignee": "me@example.com"}, format="json")
    assert r.json()["assigned_to"] == "me@example.com"


def test_escalate_endpoint_is_staff_only(auth_client, admin_client):
    stale = create_case(status=CaseStatus.UNDER_REVIEW, status_hours_ago=60)

    assert auth_client.post(f"{BASE}/workflow/escalate/").status_code == 403

    r = admin_client.post(f"{BASE}/workflow/escalate/")
    assert r.status_code == 200
    assert r.json()["escalated"] == [stale.case_number]


def test_sla_breaches_and_overdue(auth_client):
    breached = create_case(status=CaseStatus.FAULTY_PART_RETURNED)
    t0 = timezone.now() - timedelta(days=8)
    create_shipment(breached, shipped_at=t0, status="delivered", actual_delivery=t0 + timedelta(days=6))
    from domains.rma.sla import recompute_sla

    recompute_sla(breached)
    late = create_case(priority="Critical", raised_hours_ago=9)

    r = auth_client.get(f"{BASE}/workflow/sla-breaches/")
    assert r.status_code == 200
    assert [c["case_number"] for c in r.json()["results"]] == [breached.case_number]

    r = auth_client.get(f"{BASE}/workflow/sla-overdue/")
    body = r.json()
    assert body["count"] == 1
    assert body["results"][0]["case_number"] == late.case_number
    assert body["results"][0]["severity"] == "Critical"


# ─────────────────────────────────────────────────────────────
# 규칙 테이블
# ─────────────────────────────────────────────────────────────
def _rules(**overrides):
    data = {
        "assignment_by_priority": {"Critical": "boss@example.com"},
        "assignment_by_status": {},
        "default_assignee": "desk@example.com",
        "sla_hours": {"Critical": 2, "High": 12, "Medium": 48, "Low": 96},
        "escalation_hours": {"under_review": 24},
    }
    data.update(overrides)
    return data


def test_rules_get_and_replace(auth_client, admin_client):
    r = auth_client.get(f"{BASE}/workflow/rules/")
    assert r.status_code == 200
    assert r.json()["default_assignee"] == "default-technician@company.com"

    assert auth_client.put(f"{BASE}/workflow/rules/", _rules(), format="json").status_code == 403

    r = admin_client.put(f"{BASE}/workflow/rules/", _rules(), format="json")
    assert r.status_code == 200
    assert rules_store.current().sla_hours["Critical"] == 2
    assert rules_store.current().assignee_for("Low", "under_review") == "desk@example.com"


def test_rules_replace_rejects_invalid_table(admin_client):
    r = admin_client.put(
        f"{BASE}/workflow/rules/", _rules(sla_hours={"Critical": 0}), format="json"
    )
    assert r.status_code == 400

    r = admin_client.put(
        f"{BASE}/workflow/rules/", _rules(assignment_by_priority={"Urgent": "x@example.com"}), format="json"
    )
    assert r.status_code == 400

    r = admin_client.put(
        f"{BASE}/workflow/rules/", _rules(sla_hours={"Critical": 0.5}), format="json"
    )
    assert r.status_code == 400
    assert rules_store.current().sla_hours["Critical"] == 4


# ─────────────────────────────────────────────────────────────
# 배송 추적 조회
# ─────────────────────────────────────────────────────────────
def test_case_tracking_view(auth_client, blue_dart):
    case = create_case(status=CaseStatus.REPLACEMENT_SHIPPED)
    create_shipment(case, status="in_transit", current_location="Pune Hub")

    r = auth_client.get(f"{BASE}/rma/{case.pk}/tracking/")
    assert r.status_code == 200
    body = r.json()
    assert body["case_number"] == case.case_number
    assert body["outbound"]["status"] == "in_transit"
    assert body["outbound"]["current_location"] == "Pune Hub"
    assert body["outbound"]["events"] == []
    assert body["return"] is None
    assert body["sla"]["sla_breached"] is False


def test_case_tracking_refresh(auth_client, monkeypatch):
    case = create_case(status=CaseStatus.REPLACEMENT_SHIPPED)
    monkeypatch.setattr("domains.shipments.views.refresh_case", lambda case_id: 2)

    r = auth_client.post(f"{BASE}/rma/{case.pk}/tracking/refresh/")
    assert r.status_code == 200
    assert r.json()["events_created"] == 2
    assert r.json()["tracking"]["case_id"] == str(case.pk)


def test_carrier_list_hides_credentials(auth_client, blue_dart):
    r = auth_client.get(f"{BASE}/carriers/")
    assert r.status_code == 200
    row = r.json()[0]
    assert row["code"] == "BLUE_DART"
    assert "api_key" not in row and "webhook_secret" not in row
