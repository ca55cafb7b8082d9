# domains/shipments/views.py
from __future__ import annotations

import json
import logging

from django.conf import settings
from django.utils import timezone
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import parsers, permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from domains.rma.services import get_case, tracking_view
from shared.api_markers import EmptySerializer, SuccessResponseSerializer

from .adapters.base import UnknownCarrier
from .adapters.provider import CarrierRegistry, normalize_code
from .models import Carrier
from .serializers import CarrierSerializer
from .services import ingest_webhook, refresh_case
from .webhooks import SIGNATURE_HEADER, verify_signature

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------
# POST /api/v1/webhooks/delivery/{carrier}/
#  -> 택배사 푸시. 서명 검증 실패만 401, 그 외에는 항상 {"success": true}
# --------------------------------------------------------------------
class DeliveryWebhookAPI(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    parser_classes = [parsers.JSONParser]

    def _signature_ok(self, request, carrier: str, body: bytes) -> bool:
        try:
            secret = CarrierRegistry.load().get(carrier).webhook_secret
        except UnknownCarrier:
            secret = ""
        signature = request.META.get(SIGNATURE_HEADER, "")
        if secret:
            return verify_signature(secret, body, signature)
        # 택배사에 서명 키가 없으면 설정에 따라 거부
        return not getattr(settings, "WEBHOOK_REQUIRE_SIGNATURE", False)

    @extend_schema(
        request=dict,
        responses={200: SuccessResponseSerializer, 401: OpenApiResponse(description="bad signature")},
    )
    def post(self, request, carrier: str):
        # 서명은 원문 바이트 기준 (request.data 접근 전에 읽어둔다)
        body = request.body
        if not self._signature_ok(request, carrier, body):
            logger.warning("Webhook signature rejected for carrier %s", carrier)
            return Response({"detail": "invalid signature"}, status=status.HTTP_401_UNAUTHORIZED)

        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            logger.warning("Webhook from %s with invalid JSON body", carrier)
            return Response({"success": True}, status=status.HTTP_200_OK)
        if not isinstance(payload, dict):
            logger.warning("Webhook from %s with non-object body", carrier)
            return Response({"success": True}, status=status.HTTP_200_OK)

        try:
            event = ingest_webhook(carrier, payload)
        except Exception:
            # 택배사 재시도 폭주 방지: 처리 실패도 수신 확인은 한다
            logger.exception("Webhook processing failed for carrier %s", carrier)
            return Response({"success": True}, status=status.HTTP_200_OK)

        if event is not None:
            logger.info(
                "Webhook %s applied: %s -> %s", normalize_code(carrier), event.tracking_number, event.status
            )
        return Response({"success": True}, status=status.HTTP_200_OK)


# --------------------------------------------------------------------
# GET /api/v1/webhooks/health/
# --------------------------------------------------------------------
class WebhookHealthAPI(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    @extend_schema(responses={200: dict})
    def get(self, request):
        return Response(
            {
                "status": "ok",
                "timestamp": timezone.now().isoformat(),
                "carriers": CarrierRegistry.load().codes,
            },
            status=status.HTTP_200_OK,
        )


# --------------------------------------------------------------------
# GET /api/v1/carriers/
# --------------------------------------------------------------------
class CarrierListAPI(APIView):
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(responses={200: CarrierSerializer(many=True)})
    def get(self, request):
        qs = Carrier.objects.filter(is_active=True).order_by("code")
        return Response(CarrierSerializer(qs, many=True).data, status=status.HTTP_200_OK)


# --------------------------------------------------------------------
# GET  /api/v1/rma/{id}/tracking/
# POST /api/v1/rma/{id}/tracking/refresh/
# --------------------------------------------------------------------
class CaseTrackingAPI(APIView):
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(responses={200: dict})
    def get(self, request, case_id):
        return Response(tracking_view(get_case(case_id)), status=status.HTTP_200_OK)


class CaseTrackingRefreshAPI(APIView):
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(request=EmptySerializer, responses={200: dict})
    def post(self, request, case_id):
        created = refresh_case(case_id)
        case = get_case(case_id)
        return Response(
            {"events_created": created, "tracking": tracking_view(case)},
            status=status.HTTP_200_OK,
        )
