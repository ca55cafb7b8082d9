# domains/shipments/notifications.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict

import requests
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.utils import timezone

logger = logging.getLogger(__name__)

KINDS = (
    "tracking_update",
    "status_changed",
    "assignment",
    "escalation",
    "update_summary",
    "daily_report",
)


def build_message(kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    if kind not in KINDS:
        raise ValueError(f"unknown notification kind: {kind}")
    return {
        "type": kind,
        "sent_at": timezone.now().isoformat(),
        "priority": (payload or {}).get("priority", "low"),
        "data": payload or {},
    }


def send_notification(kind: str, payload: Dict[str, Any]) -> bool:
    """
    알림 1건 전송.
    RMA_NOTIFY_WEBHOOK 이 설정돼 있으면 JSON POST, 없으면 로그로만 남김.
    전송 실패는 requests 예외 그대로 올린다 (태스크에서 재시도).
    """
    message = build_message(kind, payload)
    url = getattr(settings, "RMA_NOTIFY_WEBHOOK", "")
    if not url:
        # 워커 로그에서 grep 가능
        logger.info("[NOTIFY] %s", json.dumps(message, ensure_ascii=False, cls=DjangoJSONEncoder))
        return False

    resp = requests.post(
        url,
        data=json.dumps(message, ensure_ascii=False, cls=DjangoJSONEncoder).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        timeout=5,
    )
    resp.raise_for_status()
    return True
