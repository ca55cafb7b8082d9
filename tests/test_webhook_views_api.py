# tests/test_webhook_views_api.py
import json

import pytest

from domains.shipments.models import Shipment, TrackingEvent
from domains.shipments.webhooks import compute_signature
from tests.factories import create_case, create_shipment

pytestmark = pytest.mark.django_db

URL = "/api/v1/webhooks/delivery/{carrier}/"


def _post(client, carrier, payload, **extra):
    body = payload if isinstance(payload, (bytes, str)) else json.dumps(payload)
    return client.post(URL.format(carrier=carrier), data=body, content_type="application/json", **extra)


def test_health_is_public(api_client, blue_dart, dtdc):
    r = api_client.get("/api/v1/webhooks/health/")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["carriers"] == ["BLUE_DART", "DTDC"]


def test_unmatched_tracking_number_is_acknowledged(api_client, dtdc):
    r = _post(api_client, "dtdc", {"consignment_number": "9999999999", "status": "DLV"})
    assert r.status_code == 200
    assert r.json() == {"success": True}
    assert TrackingEvent.objects.count() == 0


def test_matched_webhook_updates_shipment(api_client, blue_dart):
    case = create_case(status="replacement_shipped")
    s = create_shipment(case)

    r = _post(
        api_client,
        "blue_dart",
        {
            "waybill_number": "BD123456789IN",
            "status": "OD",
            "location": "Andheri",
            "status_date": "2025-03-10T08:00:00Z",
        },
    )
    assert r.status_code == 200
    assert r.json() == {"success": True}

    s.refresh_from_db()
    assert s.status == "out_for_delivery"
    assert s.current_location == "Andheri"
    event = TrackingEvent.objects.get(shipment=s)
    assert event.source == "webhook"
    assert event.metadata["provider"] == "BLUE_DART"
    # 케이스 상태는 배송 이벤트로 바뀌지 않는다
    case.refresh_from_db()
    assert case.status == "replacement_shipped"


def test_duplicate_webhook_is_idempotent(api_client, blue_dart):
    s = create_shipment(create_case(status="replacement_shipped"))
    payload = {"waybill_number": "BD123456789IN", "status": "IT"}

    _post(api_client, "blue_dart", payload)
    _post(api_client, "blue_dart", payload)

    assert TrackingEvent.objects.filter(shipment=s).count() == 1


def test_malformed_bodies_are_acknowledged(api_client, blue_dart):
    assert _post(api_client, "blue_dart", "{not json").json() == {"success": True}
    assert _post(api_client, "blue_dart", "[1, 2]").json() == {"success": True}
    assert _post(api_client, "blue_dart", {}).json() == {"success": True}


def test_processing_error_is_still_acknowledged(api_client, blue_dart, monkeypatch):
    def boom(carrier, payload):
        raise RuntimeError("db down")

    monkeypatch.setattr("domains.shipments.views.ingest_webhook", boom)
    r = _post(api_client, "blue_dart", {"waybill_number": "BD123456789IN", "status": "DL"})
    assert r.status_code == 200
    assert r.json() == {"success": True}


# ─────────────────────────────────────────────────────────────
# 서명
# ─────────────────────────────────────────────────────────────
@pytest.fixture
def signed_carrier(blue_dart):
    blue_dart.webhook_secret = "whsec"
    blue_dart.save()
    return blue_dart


def test_valid_signature_is_accepted(api_client, signed_carrier):
    s = create_shipment(create_case(status="replacement_shipped"))
    body = json.dumps({"waybill_number": "BD123456789IN", "status": "DL"}).encode()

    r = _post(api_client, "blue_dart", body, HTTP_X_WEBHOOK_SIGNATURE=f"sha256={compute_signature('whsec', body)}")
    assert r.status_code == 200

    s.refresh_from_db()
    assert s.status == "delivered"
    assert s.actual_delivery is not None


def test_bad_signature_is_rejected(api_client, signed_carrier):
    s = create_shipment(create_case(status="replacement_shipped"))
    body = json.dumps({"waybill_number": "BD123456789IN", "status": "DL"}).encode()

    r = _post(api_client, "blue_dart", body, HTTP_X_WEBHOOK_SIGNATURE="sha256=deadbeef")
    assert r.status_code == 401
    assert _post(api_client, "blue_dart", body).status_code == 401

    s.refresh_from_db()
    assert s.status == "pending"
    assert not TrackingEvent.objects.exists()


def test_unsigned_webhooks_can_be_required(api_client, blue_dart, settings):
    settings.WEBHOOK_REQUIRE_SIGNATURE = True
    r = _post(api_client, "blue_dart", {"waybill_number": "BD123456789IN", "status": "DL"})
    assert r.status_code == 401
    assert Shipment.objects.count() == 0
