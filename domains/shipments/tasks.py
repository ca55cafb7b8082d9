# domains/shipments/tasks.py
from __future__ import annotations

import logging
from typing import Any, Dict

import requests
from celery import shared_task
from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)

SWEEP_LOCK_TTL = 60 * 30


def _locked(name: str):
    """겹치는 스윕 방지용 캐시 락. add 가 실패하면 이미 실행 중."""
    return cache.add(f"tracking:sweep:{name}", "1", timeout=SWEEP_LOCK_TTL)


def _unlock(name: str) -> None:
    cache.delete(f"tracking:sweep:{name}")


@shared_task(bind=True, max_retries=3, retry_backoff=True, retry_jitter=True,
             name="domains.shipments.tasks.notify")
def notify(self, kind: str, payload: Dict[str, Any]) -> bool:
    from .notifications import send_notification

    try:
        return send_notification(kind, payload)
    except requests.RequestException as e:
        logger.warning("Notification %s failed: %s", kind, e)
        raise self.retry(exc=e)


@shared_task(acks_late=True,
             name="domains.shipments.tasks.refresh_case_tracking")
def refresh_case_tracking(case_id: str) -> int:
    """
    케이스 1건 조회 → 상태가 바뀐 배송만 반영.
    반환: 생성된 이벤트 수
    """
    from domains.rma.exceptions import CaseNotFound

    from .services import refresh_case

    try:
        return int(refresh_case(case_id))
    except CaseNotFound:
        logger.info("Case %s disappeared before refresh", case_id)
        return 0


def _sweep(name: str, case_ids) -> Dict[str, int]:
    from .services import run_sweep

    if not _locked(name):
        logger.info("Tracking sweep %s already running, skipped", name)
        return {"total": 0, "successful": 0, "failed": 0, "events": 0, "skipped": 1}
    try:
        stats = run_sweep(case_ids)
    finally:
        _unlock(name)

    if stats.get("failed"):
        notify.delay("update_summary", dict(stats, sweep=name, priority="medium"))
    return stats


@shared_task(name="domains.shipments.tasks.poll_active_shipments")
def poll_active_shipments() -> Dict[str, int]:
    """진행 중(집화~배송출발) 배송이 있는 케이스만 갱신 (기본 30분 주기)."""
    from .services import active_case_ids

    return _sweep("active", active_case_ids())


@shared_task(name="domains.shipments.tasks.poll_all_tracked_cases")
def poll_all_tracked_cases() -> Dict[str, int]:
    """운송장이 있는 모든 케이스 전체 점검 (기본 2시간 주기)."""
    from .services import tracked_case_ids

    return _sweep("all", tracked_case_ids())


@shared_task(name="domains.shipments.tasks.daily_tracking_maintenance")
def daily_tracking_maintenance() -> Dict[str, Any]:
    """보존기간 지난 이벤트 정리 + 일일 요약 로그."""
    from .services import daily_summary, prune_events

    deleted = prune_events(getattr(settings, "TRACKING_EVENT_RETENTION_DAYS", 30))
    summary = daily_summary()
    summary["pruned_events"] = deleted
    logger.info("Daily tracking summary: %s", summary)
    notify.delay("daily_report", summary)
    return summary
