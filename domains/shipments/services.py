# domains/shipments/services.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from django.apps import apps
from django.conf import settings
from django.db import transaction
from django.db.models import Count, OuterRef, Subquery
from django.utils import timezone

from domains.rma.exceptions import CaseNotFound
from domains.rma.sla import recompute_sla

from .adapters.base import CarrierError, ProviderUnavailable, TrackingResult
from .adapters.provider import CarrierRegistry, normalize_code
from .models import (
    ACTIVE_STATUSES,
    STATUS_RANK,
    TERMINAL_STATUSES,
    EventSource,
    Shipment,
    ShipmentStatus,
    TrackingEvent,
)
from .webhooks import normalize

logger = logging.getLogger(__name__)

# 순위를 건너뛰어도 언제든 받아들이는 종료 분기
_ESCAPE_STATUSES = {ShipmentStatus.EXCEPTION, ShipmentStatus.RETURNED}

_NOTIFY_PRIORITY = {
    ShipmentStatus.DELIVERED: "high",
    ShipmentStatus.EXCEPTION: "high",
    ShipmentStatus.OUT_FOR_DELIVERY: "medium",
}


def _case_model():
    return apps.get_model("rma", "RMACase")


def _queue_notification(kind: str, payload: Dict[str, Any]) -> None:
    from .tasks import notify

    transaction.on_commit(lambda: notify.delay(kind, payload))


# === 공통 갱신 경로 (폴링/웹훅/수동) ========================================
def is_forward(current: str, new: str) -> bool:
    """현재 상태에서 new 로 진행 가능한지 (수동 입력 제외 규칙)."""
    if current in TERMINAL_STATUSES:
        return False
    if new in _ESCAPE_STATUSES:
        return True
    return STATUS_RANK.get(new, -1) > STATUS_RANK.get(current, -1)


@transaction.atomic
def apply_tracking_update(
    shipment_id,
    *,
    status: str,
    source: str,
    occurred_at: Optional[datetime] = None,
    location: str = "",
    description: str = "",
    estimated_delivery: Optional[datetime] = None,
    actual_delivery: Optional[datetime] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[TrackingEvent]:
    """
    배송 상태 변경 1건 반영: 스냅샷 갱신 + 이벤트 append + SLA 재계산.

    - 같은 케이스에 대한 쓰기는 케이스 행 잠금(select_for_update)으로 직렬화
    - 상태가 같으면 no-op (멱등)
    - api/webhook 은 진행 순위가 앞서는 상태만 반영. 도착 순서가 아니라 배송 진행 순서로 판정
    - 이벤트 시각은 직전 이벤트보다 앞서지 않도록 보정 (원래 시각은 metadata.reported_at)
    반환: 생성된 TrackingEvent 또는 None(무시됨)
    """
    now = timezone.now()
    case_id = Shipment.objects.filter(pk=shipment_id).values_list("case_id", flat=True).first()
    if case_id is None:
        return None
    case = _case_model().objects.select_for_update().get(pk=case_id)
    shipment = Shipment.objects.get(pk=shipment_id)

    prev_status = shipment.status
    if status == prev_status:
        return None
    if source != EventSource.MANUAL and not is_forward(prev_status, status):
        logger.info(
            "Stale %s update ignored for %s (%s): %s -> %s",
            source, case.case_number, shipment.direction, prev_status, status,
        )
        return None

    reported_at = occurred_at or now
    last_event_at = (
        TrackingEvent.objects.filter(shipment=shipment)
        .order_by("-occurred_at")
        .values_list("occurred_at", flat=True)
        .first()
    )
    event_at = max(reported_at, last_event_at) if last_event_at else reported_at

    meta = dict(metadata or {})
    meta["reported_at"] = reported_at.isoformat()
    meta["previous_status"] = prev_status

    event = TrackingEvent.objects.create(
        shipment=shipment,
        direction=shipment.direction,
        occurred_at=event_at,
        status=status,
        location=location or "",
        description=description or f"Status updated to {status}",
        carrier_code=shipment.carrier_code,
        tracking_number=shipment.tracking_number,
        source=source,
        metadata=meta,
    )

    shipment.status = status
    if location:
        shipment.current_location = location
    if estimated_delivery:
        shipment.estimated_delivery = estimated_delivery
    if actual_delivery:
        shipment.actual_delivery = actual_delivery
    elif status == ShipmentStatus.DELIVERED and not shipment.actual_delivery:
        shipment.actual_delivery = reported_at
    if not shipment.shipped_at and status != ShipmentStatus.PENDING:
        shipment.shipped_at = reported_at
    shipment.last_updated = max(shipment.last_updated, now) if shipment.last_updated else now
    if source == EventSource.API:
        shipment.last_synced_at = now
        shipment.last_error = ""
    shipment.save()

    recompute_sla(case)

    logger.info(
        "Shipment status changed for %s (%s): %s -> %s [%s]",
        case.case_number, shipment.direction, prev_status, status, source,
    )
    _queue_notification(
        "tracking_update",
        {
            "case_id": str(case.id),
            "case_number": case.case_number,
            "direction": shipment.direction,
            "tracking_number": shipment.tracking_number,
            "carrier": shipment.carrier_code,
            "previous_status": prev_status,
            "status": status,
            "location": shipment.current_location,
            "priority": _NOTIFY_PRIORITY.get(status, "low"),
        },
    )
    return event
# ============================================================================


# === 폴링 (오케스트레이터) ==================================================
def _track(registry: CarrierRegistry, shipment: Shipment) -> Tuple[Shipment, Optional[TrackingResult], Optional[CarrierError]]:
    # 네트워크만 사용 (DB 접근 없음) → 스레드에서 안전
    try:
        adapter = registry.resolve(shipment.carrier_code)
        return shipment, adapter.track(shipment.tracking_number), None
    except CarrierError as e:
        return shipment, None, e


def fetch_tracking(
    shipments: Iterable[Shipment], registry: CarrierRegistry, max_workers: int
) -> List[Tuple[Shipment, Optional[TrackingResult], Optional[CarrierError]]]:
    shipments = list(shipments)
    if not shipments:
        return []
    workers = max(1, min(max_workers, len(shipments)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tracking") as pool:
        return list(pool.map(lambda s: _track(registry, s), shipments))


def pollable_shipments(case) -> List[Shipment]:
    return [
        s
        for s in case.shipments.all()
        if s.status not in TERMINAL_STATUSES and (s.tracking_number or "").strip()
    ]


def _record_failure(shipment: Shipment, error: CarrierError) -> None:
    if isinstance(error, ProviderUnavailable):
        logger.warning("Tracking fetch failed for %s: %s", shipment, error)
    else:
        logger.error("Tracking configuration error for %s: %s", shipment, error)
    Shipment.objects.filter(pk=shipment.pk).update(
        last_error=str(error)[:255], last_synced_at=timezone.now()
    )


def _apply_result(shipment: Shipment, result: TrackingResult) -> int:
    if result.status == shipment.status:
        Shipment.objects.filter(pk=shipment.pk).update(last_synced_at=timezone.now(), last_error="")
        return 0

    latest = next((p for p in reversed(result.points) if p.status == result.status), None)
    event = apply_tracking_update(
        shipment.pk,
        status=result.status,
        source=EventSource.API,
        occurred_at=latest.occurred_at if latest else None,
        location=result.location or (latest.location if latest else ""),
        description=latest.description if latest else "",
        estimated_delivery=result.estimated_delivery,
        actual_delivery=result.actual_delivery,
        metadata={"provider": shipment.carrier_code, "checkpoints": len(result.points)},
    )
    return 1 if event else 0


def _apply_rows(rows) -> Tuple[int, int]:
    created, errors = 0, 0
    for shipment, result, error in rows:
        if error is not None:
            _record_failure(shipment, error)
            errors += 1
            continue
        created += _apply_result(shipment, result)
    return created, errors


def refresh_case(case_id, registry: Optional[CarrierRegistry] = None) -> int:
    """
    케이스 1건의 outbound/return 배송을 조회해 상태가 바뀐 경우만 반영.
    어댑터 오류는 기록만 하고 상태는 건드리지 않는다 (다음 주기에 재시도).
    반환: 생성된 이벤트 수
    """
    case = _case_model().objects.filter(pk=case_id).first()
    if case is None:
        raise CaseNotFound(case_id)

    shipments = pollable_shipments(case)
    if not shipments:
        return 0
    registry = registry or CarrierRegistry.load()
    created, _ = _apply_rows(fetch_tracking(shipments, registry, max_workers=2))
    return created


def active_case_ids() -> List[Any]:
    """진행 중(집화~배송출발) 배송이 하나라도 있는 케이스."""
    return list(
        Shipment.objects.filter(status__in=ACTIVE_STATUSES)
        .exclude(tracking_number="")
        .values_list("case_id", flat=True)
        .distinct()
    )


def tracked_case_ids() -> List[Any]:
    """운송장이 등록된 모든 케이스 (전체 점검용)."""
    return list(
        Shipment.objects.exclude(tracking_number="")
        .values_list("case_id", flat=True)
        .distinct()
    )


def run_sweep(case_ids: Iterable[Any], registry: Optional[CarrierRegistry] = None,
              max_workers: Optional[int] = None) -> Dict[str, int]:
    """
    여러 케이스 일괄 갱신. 조회는 max_workers 개 스레드로 병렬, 반영은 케이스별로 격리.
    한 케이스의 실패가 다른 케이스를 막지 않는다.
    """
    registry = registry or CarrierRegistry.load()
    max_workers = max_workers or int(getattr(settings, "TRACKING_MAX_WORKERS", 8))
    cases = list(_case_model().objects.filter(pk__in=list(case_ids)).prefetch_related("shipments"))

    by_case: Dict[Any, List[Shipment]] = {c.pk: pollable_shipments(c) for c in cases}
    rows = fetch_tracking(
        [s for shipments in by_case.values() for s in shipments], registry, max_workers
    )
    rows_by_case: Dict[Any, list] = {}
    for row in rows:
        rows_by_case.setdefault(row[0].case_id, []).append(row)

    stats = {"total": len(cases), "successful": 0, "failed": 0, "events": 0}
    for case in cases:
        try:
            created, errors = _apply_rows(rows_by_case.get(case.pk, []))
        except Exception:
            logger.exception("Tracking sweep failed for case %s", case.case_number)
            stats["failed"] += 1
            continue
        stats["events"] += created
        if errors:
            stats["failed"] += 1
        else:
            stats["successful"] += 1

    logger.info(
        "Tracking sweep finished: total=%(total)s successful=%(successful)s "
        "failed=%(failed)s events=%(events)s",
        stats,
    )
    return stats
# ============================================================================


# === 웹훅 ===================================================================
def find_shipment_by_tracking(tracking_number: str, carrier_code: str = "") -> Optional[Shipment]:
    """운송장 번호로 outbound/return 양쪽을 검색. 택배사 코드가 일치하는 건을 우선."""
    number = (tracking_number or "").strip()
    if not number:
        return None
    matches = list(Shipment.objects.filter(tracking_number=number).select_related("case"))
    if not matches:
        return None
    code = normalize_code(carrier_code)
    for s in matches:
        if normalize_code(s.carrier_code) == code:
            return s
    return matches[0]


def ingest_webhook(carrier_code: str, payload: Dict[str, Any]) -> Optional[TrackingEvent]:
    """
    웹훅 payload 정규화 → 케이스 매칭 → 공통 갱신 경로.
    매칭되는 케이스가 없으면 조용히 버린다 (택배사 재시도/노이즈).
    """
    update = normalize(carrier_code, payload)
    if not update.tracking_number:
        logger.info("Webhook from %s without tracking number ignored", carrier_code)
        return None

    shipment = find_shipment_by_tracking(update.tracking_number, update.carrier_code)
    if shipment is None:
        logger.info("No RMA found for tracking number: %s (%s)", update.tracking_number, carrier_code)
        return None
    if update.status == shipment.status:
        return None

    return apply_tracking_update(
        shipment.pk,
        status=update.status,
        source=EventSource.WEBHOOK,
        occurred_at=update.occurred_at,
        location=update.location,
        description=update.description,
        estimated_delivery=update.estimated_delivery,
        actual_delivery=update.actual_delivery,
        metadata={"provider": normalize_code(carrier_code), "webhook": update.raw},
    )
# ============================================================================


# === 유지보수 ===============================================================
def prune_events(retention_days: Optional[int] = None, now: Optional[datetime] = None) -> int:
    """
    보존기간이 지난 이벤트 삭제. 각 배송의 마지막 이벤트는 스냅샷 근거이므로 남긴다.
    반환: 삭제 건수
    """
    days = retention_days or int(getattr(settings, "TRACKING_EVENT_RETENTION_DAYS", 30))
    cutoff = (now or timezone.now()) - timedelta(days=days)

    latest = (
        TrackingEvent.objects.filter(shipment=OuterRef("pk"))
        .order_by("-occurred_at", "-created_at")
        .values("pk")[:1]
    )
    keep = set(
        Shipment.objects.annotate(latest_event=Subquery(latest))
        .exclude(latest_event=None)
        .values_list("latest_event", flat=True)
    )
    deleted, _ = (
        TrackingEvent.objects.filter(occurred_at__lt=cutoff).exclude(pk__in=keep).delete()
    )
    logger.info("Pruned %s tracking events older than %s days", deleted, days)
    return deleted


def daily_summary(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or timezone.now()
    since = now - timedelta(days=1)
    by_status = dict(
        Shipment.objects.values("status").annotate(n=Count("id")).values_list("status", "n")
    )
    return {
        "date": now.date().isoformat(),
        "shipments_by_status": by_status,
        "active_shipments": sum(by_status.get(s, 0) for s in ACTIVE_STATUSES),
        "delivered_last_24h": Shipment.objects.filter(
            status=ShipmentStatus.DELIVERED, actual_delivery__gte=since
        ).count(),
        "events_last_24h": TrackingEvent.objects.filter(created_at__gte=since).count(),
        "sync_errors": Shipment.objects.exclude(last_error="").count(),
        "sla_breached_cases": apps.get_model("rma", "SLARecord").objects.filter(sla_breached=True).count(),
    }
