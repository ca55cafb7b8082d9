# domains/rma/rules.py
"""
배정/에스컬레이션/SLA 규칙 테이블.

규칙은 불변 객체(WorkflowRules)이고, 변경은 테이블 전체를 새 객체로 교체하는 방식만 허용한다.
교체된 규칙은 캐시에 저장되어 웹/워커 프로세스가 같은 규칙을 본다.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from django.conf import settings
from django.core.cache import cache

CACHE_KEY = "rma:workflow_rules"

DEFAULT_ASSIGNMENT_BY_PRIORITY = {
    "Critical": "manager@company.com",
    "High": "senior-technician@company.com",
}
DEFAULT_ASSIGNMENT_BY_STATUS = {
    "under_review": "review-team@company.com",
    "vendor_approved": "logistics@company.com",
}
DEFAULT_ASSIGNEE = "default-technician@company.com"
DEFAULT_SLA_HOURS = {"Critical": 4, "High": 24, "Medium": 72, "Low": 168}
DEFAULT_ESCALATION_HOURS = {
    "under_review": 48,
    "sent_to_vendor": 72,
    "vendor_approved": 24,
}


def _frozen(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


def _positive_numbers(name: str, mapping: Mapping[str, Any]) -> Dict[str, float]:
    out = {}
    for key, value in (mapping or {}).items():
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"{name}.{key} must be a number")
        if number <= 0:
            raise ValueError(f"{name}.{key} must be positive")
        out[str(key)] = int(number) if number.is_integer() else number
    return out


def _whole_hours(name: str, mapping: Mapping[str, Any]) -> Dict[str, int]:
    """SLA 목표는 정수 시간(1 이상)만 허용."""
    out = _positive_numbers(name, mapping)
    for key, number in out.items():
        if not isinstance(number, int):
            raise ValueError(f"{name}.{key} must be a whole number of hours")
    return out


@dataclass(frozen=True)
class WorkflowRules:
    assignment_by_priority: Mapping[str, str] = field(default_factory=lambda: _frozen(DEFAULT_ASSIGNMENT_BY_PRIORITY))
    assignment_by_status: Mapping[str, str] = field(default_factory=lambda: _frozen(DEFAULT_ASSIGNMENT_BY_STATUS))
    default_assignee: str = DEFAULT_ASSIGNEE
    sla_hours: Mapping[str, int] = field(default_factory=lambda: _frozen(DEFAULT_SLA_HOURS))
    escalation_hours: Mapping[str, float] = field(default_factory=lambda: _frozen(DEFAULT_ESCALATION_HOURS))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkflowRules":
        """검증 후 생성. 누락된 키는 기본값. 잘못된 값은 ValueError."""
        data = data or {}
        sla = dict(DEFAULT_SLA_HOURS)
        sla.update(_whole_hours("sla_hours", data.get("sla_hours") or {}))
        default_assignee = str(data.get("default_assignee") or DEFAULT_ASSIGNEE).strip()
        if not default_assignee:
            raise ValueError("default_assignee must not be empty")
        return cls(
            assignment_by_priority=_frozen(
                data.get("assignment_by_priority", DEFAULT_ASSIGNMENT_BY_PRIORITY)
            ),
            assignment_by_status=_frozen(
                data.get("assignment_by_status", DEFAULT_ASSIGNMENT_BY_STATUS)
            ),
            default_assignee=default_assignee,
            sla_hours=_frozen(sla),
            escalation_hours=_frozen(
                _positive_numbers(
                    "escalation_hours", data.get("escalation_hours", DEFAULT_ESCALATION_HOURS)
                )
            ),
        )

    @classmethod
    def from_settings(cls) -> "WorkflowRules":
        return cls.from_dict(
            {
                "assignment_by_priority": getattr(
                    settings, "RMA_ASSIGNMENT_BY_PRIORITY", DEFAULT_ASSIGNMENT_BY_PRIORITY
                ),
                "assignment_by_status": getattr(
                    settings, "RMA_ASSIGNMENT_BY_STATUS", DEFAULT_ASSIGNMENT_BY_STATUS
                ),
                "default_assignee": getattr(settings, "RMA_DEFAULT_ASSIGNEE", DEFAULT_ASSIGNEE),
                "sla_hours": getattr(settings, "RMA_SLA_HOURS", DEFAULT_SLA_HOURS),
                "escalation_hours": getattr(
                    settings, "RMA_ESCALATION_HOURS", DEFAULT_ESCALATION_HOURS
                ),
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignment_by_priority": dict(self.assignment_by_priority),
            "assignment_by_status": dict(self.assignment_by_status),
            "default_assignee": self.default_assignee,
            "sla_hours": dict(self.sla_hours),
            "escalation_hours": dict(self.escalation_hours),
        }

    def assignee_for(self, priority: str, status: str) -> str:
        return (
            self.assignment_by_priority.get(priority)
            or self.assignment_by_status.get(status)
            or self.default_assignee
        )

    def escalation_threshold(self, status: str) -> Optional[float]:
        return self.escalation_hours.get(status)


class RulesStore:
    """현재 규칙 보관소. replace() 는 테이블 전체를 한 번에 교체한다."""

    def __init__(self, initial: Optional[WorkflowRules] = None):
        self._lock = threading.Lock()
        self._local = initial

    def current(self) -> WorkflowRules:
        data = cache.get(CACHE_KEY)
        if data is not None:
            return WorkflowRules.from_dict(data)
        with self._lock:
            if self._local is None:
                self._local = WorkflowRules.from_settings()
            return self._local

    def replace(self, rules: WorkflowRules) -> WorkflowRules:
        with self._lock:
            self._local = rules
            cache.set(CACHE_KEY, rules.to_dict(), timeout=None)
        return rules

    def reset(self) -> None:
        with self._lock:
            self._local = None
            cache.delete(CACHE_KEY)


rules_store = RulesStore()
