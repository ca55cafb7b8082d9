# shared/errors.py
"""
도메인 예외 → HTTP 응답 매핑 (REST_FRAMEWORK.EXCEPTION_HANDLER).

- InvalidTransition → 409
- CaseNotFound → 404
- InvalidFormat / UnknownCarrier / ValueError(규칙 검증) → 400
- ProviderUnavailable → 502
그 외는 DRF 기본 처리.
"""
from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from domains.rma.exceptions import CaseNotFound, InvalidTransition
from domains.shipments.adapters.base import InvalidFormat, ProviderUnavailable, UnknownCarrier

logger = logging.getLogger(__name__)


def exception_handler(exc, context):
    if isinstance(exc, InvalidTransition):
        return Response(
            {
                "detail": str(exc),
                "code": "invalid_transition",
                "action": exc.action,
                "current_status": exc.current_status,
            },
            status=status.HTTP_409_CONFLICT,
        )
    if isinstance(exc, CaseNotFound):
        return Response({"detail": str(exc), "code": "not_found"}, status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, InvalidFormat):
        return Response(
            {"detail": str(exc), "code": "invalid_tracking_number"},
            status=status.HTTP_400_BAD_REQUEST,
        )
    if isinstance(exc, UnknownCarrier):
        return Response(
            {"detail": str(exc), "code": "unknown_carrier"}, status=status.HTTP_400_BAD_REQUEST
        )
    if isinstance(exc, ProviderUnavailable):
        logger.warning("Carrier provider unavailable: %s", exc)
        return Response(
            {"detail": str(exc), "code": "provider_unavailable"},
            status=status.HTTP_502_BAD_GATEWAY,
        )
    return drf_exception_handler(exc, context)
