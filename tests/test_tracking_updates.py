# tests/test_tracking_updates.py
from datetime import timedelta

import pytest
from django.utils import timezone

from domains.shipments.models import EventSource, Shipment, ShipmentStatus, TrackingEvent
from domains.shipments.services import apply_tracking_update, ingest_webhook, is_forward
from tests.factories import create_case, create_shipment

pytestmark = pytest.mark.django_db


@pytest.fixture
def shipment():
    return create_shipment(create_case(status="replacement_shipped"))


def _events(shipment):
    return list(TrackingEvent.objects.filter(shipment=shipment).order_by("occurred_at", "created_at"))


# ─────────────────────────────────────────────────────────────
# 진행 순위
# ─────────────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "current, new, expected",
    [
        ("pending", "in_transit", True),
        ("in_transit", "picked_up", False),
        ("out_for_delivery", "exception", True),
        ("in_transit", "returned", True),
        ("delivered", "exception", False),
        ("exception", "delivered", False),
    ],
)
def test_is_forward(current, new, expected):
    assert is_forward(current, new) is expected


# ─────────────────────────────────────────────────────────────
# 공통 갱신 경로
# ─────────────────────────────────────────────────────────────
def test_same_status_is_noop(shipment):
    apply_tracking_update(shipment.pk, status="in_transit", source=EventSource.API)
    assert apply_tracking_update(shipment.pk, status="in_transit", source=EventSource.WEBHOOK) is None
    assert len(_events(shipment)) == 1


def test_stale_update_is_ignored(shipment):
    apply_tracking_update(shipment.pk, status="out_for_delivery", source=EventSource.WEBHOOK)
    assert apply_tracking_update(shipment.pk, status="in_transit", source=EventSource.API) is None

    shipment.refresh_from_db()
    assert shipment.status == "out_for_delivery"
    assert [e.status for e in _events(shipment)] == ["out_for_delivery"]


def test_terminal_shipment_rejects_automated_updates(shipment):
    apply_tracking_update(shipment.pk, status="delivered", source=EventSource.API)
    assert apply_tracking_update(shipment.pk, status="exception", source=EventSource.WEBHOOK) is None


def test_manual_update_bypasses_rank(shipment):
    apply_tracking_update(shipment.pk, status="out_for_delivery", source=EventSource.API)
    event = apply_tracking_update(shipment.pk, status="in_transit", source=EventSource.MANUAL)

    assert event is not None
    shipment.refresh_from_db()
    assert shipment.status == "in_transit"


def test_event_time_never_goes_backwards(shipment):
    now = timezone.now()
    apply_tracking_update(shipment.pk, status="in_transit", source=EventSource.API, occurred_at=now)
    late = apply_tracking_update(
        shipment.pk,
        status="out_for_delivery",
        source=EventSource.WEBHOOK,
        occurred_at=now - timedelta(hours=3),
    )

    assert late.occurred_at == now
    assert late.metadata["reported_at"] == (now - timedelta(hours=3)).isoformat()
    assert late.metadata["previous_status"] == "in_transit"

    times = [e.occurred_at for e in _events(shipment)]
    assert times == sorted(times)


def test_delivered_sets_actual_delivery_and_snapshot(shipment):
    at = timezone.now() - timedelta(hours=1)
    apply_tracking_update(
        shipment.pk, status="delivered", source=EventSource.API, occurred_at=at, location="Mumbai"
    )
    shipment.refresh_from_db()
    assert shipment.status == ShipmentStatus.DELIVERED
    assert shipment.actual_delivery == at
    assert shipment.current_location == "Mumbai"
    assert shipment.last_synced_at is not None


def test_update_for_missing_shipment_returns_none():
    import uuid

    assert apply_tracking_update(uuid.uuid4(), status="in_transit", source=EventSource.API) is None


def test_status_change_queues_notification(shipment, notifications, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        apply_tracking_update(shipment.pk, status="delivered", source=EventSource.WEBHOOK)

    kinds = [k for k, _ in notifications]
    assert kinds == ["tracking_update"]
    payload = notifications[0][1]
    assert payload["status"] == "delivered"
    assert payload["priority"] == "high"


# ─────────────────────────────────────────────────────────────
# 웹훅/폴링 수렴
# ─────────────────────────────────────────────────────────────
def _webhook(status):
    return {"waybill_number": "BD123456789IN", "status": status, "location": "Hub"}


@pytest.mark.parametrize("webhook_first", [True, False])
def test_webhook_and_poll_converge_regardless_of_order(blue_dart, webhook_first):
    case = create_case(status="replacement_shipped")
    s = create_shipment(case)

    def poll():
        apply_tracking_update(s.pk, status="out_for_delivery", source=EventSource.API)

    def hook():
        ingest_webhook("BLUE_DART", _webhook("IT"))

    steps = [hook, poll] if webhook_first else [poll, hook]
    for step in steps:
        step()

    s.refresh_from_db()
    assert s.status == "out_for_delivery"
    statuses = [e.status for e in _events(s)]
    assert statuses[-1] == "out_for_delivery"
    assert len(statuses) == (2 if webhook_first else 1)


def test_webhook_matches_return_leg(blue_dart):
    case = create_case(status="faulty_part_returned")
    create_shipment(case, direction="outbound", tracking_number="BD000000001IN", status="delivered")
    ret = create_shipment(case, direction="return", tracking_number="BD123456789IN")

    event = ingest_webhook("blue-dart", _webhook("PU"))

    assert event is not None
    assert event.direction == "return"
    assert event.source == EventSource.WEBHOOK
    ret.refresh_from_db()
    assert ret.status == "picked_up"


def test_webhook_without_match_is_dropped(blue_dart):
    assert ingest_webhook("BLUE_DART", _webhook("DL")) is None
    assert ingest_webhook("BLUE_DART", {"status": "DL"}) is None
    assert TrackingEvent.objects.count() == 0
    assert Shipment.objects.count() == 0
