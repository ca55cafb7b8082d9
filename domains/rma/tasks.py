# domains/rma/tasks.py
from __future__ import annotations

from typing import Any, Dict

from celery import shared_task


@shared_task(name="domains.rma.tasks.auto_escalate_cases")
def auto_escalate_cases() -> Dict[str, Any]:
    """상태 체류 시간이 임계치를 넘은 케이스 자동 에스컬레이션 (기본 1시간 주기)."""
    from .workflow import engine

    return engine.auto_escalate()
