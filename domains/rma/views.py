# domains/rma/views.py
from __future__ import annotations

import django_filters as df
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema
from rest_framework import generics, permissions, status
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.response import Response
from rest_framework.views import APIView

from shared.api_markers import EmptySerializer
from shared.pagination import StandardResultsSetPagination
from shared.permissions import IsStaff, ReadOnlyOrStaff, actor_of

from .models import RMACase
from .rules import rules_store
from .serializers import (
    AssignSerializer,
    RMACaseDetailSerializer,
    RMACaseListSerializer,
    RMACaseWriteSerializer,
    WorkflowHistorySerializer,
    WorkflowProcessSerializer,
    WorkflowRulesSerializer,
)
from .services import case_summary, create_case, get_case, update_case
from .workflow import engine


# -------------------------------
# Filters
# -------------------------------
class RMACaseFilter(df.FilterSet):
    status = df.CharFilter()
    priority = df.CharFilter()
    assigned_to = df.CharFilter(lookup_expr="iexact")
    site_name = df.CharFilter(lookup_expr="icontains")
    sla_breached = df.BooleanFilter(field_name="sla__sla_breached")
    raised_from = df.IsoDateTimeFilter(field_name="raised_at", lookup_expr="gte")
    raised_to = df.IsoDateTimeFilter(field_name="raised_at", lookup_expr="lte")

    class Meta:
        model = RMACase
        fields = ["status", "priority", "assigned_to", "site_name", "sla_breached"]


def _detail(case) -> dict:
    data = dict(RMACaseDetailSerializer(case).data)
    data["metrics"] = case_summary(case)
    return data


# -------------------------------
# GET (list) / POST (create)
# -------------------------------
class RMACaseListCreateAPI(generics.ListCreateAPIView):
    """
    GET  /api/v1/rma/   (필터/검색/정렬/페이징)
    POST /api/v1/rma/   (접수 → 번호 발급 + 자동 배정)
    """
    permission_classes = [permissions.IsAuthenticated]
    queryset = RMACase.objects.select_related("sla").all()
    filter_backends = [DjangoFilterBackend, SearchFilter, OrderingFilter]
    filterset_class = RMACaseFilter
    search_fields = ["case_number", "serial_number", "site_name", "product_name"]
    ordering_fields = ["raised_at", "status_changed_at", "priority", "created_at"]
    pagination_class = StandardResultsSetPagination

    def get_serializer_class(self):
        return RMACaseWriteSerializer if self.request.method == "POST" else RMACaseListSerializer

    @extend_schema(operation_id="ListRMACases")
    def get(self, *args, **kwargs):
        return super().get(*args, **kwargs)

    @extend_schema(
        operation_id="CreateRMACase",
        request=RMACaseWriteSerializer,
        responses={201: RMACaseDetailSerializer},
    )
    def post(self, request, *args, **kwargs):
        ser = RMACaseWriteSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        case = create_case(ser.validated_data, user=request.user, actor=actor_of(request))
        return Response(_detail(get_case(case.pk)), status=status.HTTP_201_CREATED)


# -------------------------------
# GET (detail) / PATCH (update)
# -------------------------------
class RMACaseDetailAPI(APIView):
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(responses={200: RMACaseDetailSerializer})
    def get(self, request, case_id):
        return Response(_detail(get_case(case_id)), status=status.HTTP_200_OK)

    @extend_schema(request=RMACaseWriteSerializer, responses={200: RMACaseDetailSerializer})
    def patch(self, request, case_id):
        ser = RMACaseWriteSerializer(data=request.data, partial=True)
        ser.is_valid(raise_exception=True)
        data = dict(ser.validated_data)
        data.pop("assigned_to", None)
        update_case(case_id, data, actor=actor_of(request))
        return Response(_detail(get_case(case_id)), status=status.HTTP_200_OK)


class RMACaseHistoryAPI(APIView):
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(responses={200: WorkflowHistorySerializer(many=True)})
    def get(self, request, case_id):
        case = get_case(case_id)
        return Response(
            WorkflowHistorySerializer(case.history.all(), many=True).data,
            status=status.HTTP_200_OK,
        )


# -------------------------------
# Workflow
# -------------------------------
class WorkflowAssignAPI(APIView):
    """POST /api/v1/workflow/assign/{id}/  assignee 생략 시 규칙 기반 자동 배정"""
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(request=AssignSerializer, responses={200: RMACaseListSerializer})
    def post(self, request, case_id):
        ser = AssignSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        case = engine.assign(case_id, ser.validated_data.get("assignee"), actor=actor_of(request))
        return Response(RMACaseListSerializer(case).data, status=status.HTTP_200_OK)


class WorkflowProcessAPI(APIView):
    """POST /api/v1/workflow/process/{id}/  {action, note?, reason?, assignee?, shipment?}"""
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(request=WorkflowProcessSerializer, responses={200: RMACaseDetailSerializer})
    def post(self, request, case_id):
        ser = WorkflowProcessSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        engine.process(
            case_id,
            ser.validated_data["action"],
            ser.to_action_data(),
            actor=actor_of(request),
        )
        return Response(_detail(get_case(case_id)), status=status.HTTP_200_OK)


class WorkflowEscalateAPI(APIView):
    """POST /api/v1/workflow/escalate/  자동 에스컬레이션 즉시 실행 (운영자)"""
    permission_classes = [IsStaff]

    @extend_schema(request=EmptySerializer, responses={200: dict})
    def post(self, request):
        return Response(engine.auto_escalate(), status=status.HTTP_200_OK)


class SLABreachListAPI(generics.ListAPIView):
    """GET /api/v1/workflow/sla-breaches/  배송 구간 SLA 위반 케이스"""
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = RMACaseListSerializer
    pagination_class = StandardResultsSetPagination

    def get_queryset(self):
        return engine.sla_breaches()


class SLAOverdueAPI(APIView):
    """GET /api/v1/workflow/sla-overdue/  경과 시간 기준 SLA 초과 케이스"""
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(responses={200: dict})
    def get(self, request):
        rows = engine.overdue()
        return Response({"count": len(rows), "results": rows}, status=status.HTTP_200_OK)


class WorkflowRulesAPI(APIView):
    """
    GET /api/v1/workflow/rules/  현재 규칙
    PUT /api/v1/workflow/rules/  규칙 테이블 전체 교체 (운영자)
    """
    permission_classes = [ReadOnlyOrStaff]

    @extend_schema(responses={200: WorkflowRulesSerializer})
    def get(self, request):
        return Response(rules_store.current().to_dict(), status=status.HTTP_200_OK)

    @extend_schema(request=WorkflowRulesSerializer, responses={200: WorkflowRulesSerializer})
    def put(self, request):
        ser = WorkflowRulesSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        rules = rules_store.replace(ser.to_rules())
        return Response(rules.to_dict(), status=status.HTTP_200_OK)
