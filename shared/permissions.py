# shared/permissions.py
from __future__ import annotations

from rest_framework.permissions import SAFE_METHODS, BasePermission

# ---- helpers ---------------------------------------------------------------


def _is_schema_generation(view) -> bool:
    """drf-spectacular 스키마 생성 시 True (권한을 널널하게 통과시켜 문서 생성 편의)."""
    return bool(getattr(view, "swagger_fake_view", False))


def _is_staff(user) -> bool:
    return bool(getattr(user, "is_authenticated", False) and getattr(user, "is_staff", False))


# ---- staff-based permissions -----------------------------------------------


class IsStaff(BasePermission):
    """운영자(is_staff) 전용"""

    def has_permission(self, request, view):
        if _is_schema_generation(view):
            return True
        return _is_staff(request.user)


class ReadOnlyOrStaff(BasePermission):
    """로그인 사용자는 읽기, 쓰기/변경은 운영자만"""

    def has_permission(self, request, view):
        if _is_schema_generation(view):
            return True
        if not getattr(request.user, "is_authenticated", False):
            return False
        if request.method in SAFE_METHODS:
            return True
        return _is_staff(request.user)


def actor_of(request) -> str:
    """이력/로그에 남길 행위자 이름."""
    user = getattr(request, "user", None)
    if user is None or not getattr(user, "is_authenticated", False):
        return "anonymous"
    return getattr(user, "email", "") or user.get_username()


__all__ = ["IsStaff", "ReadOnlyOrStaff", "actor_of"]
