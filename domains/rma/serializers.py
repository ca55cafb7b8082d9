# domains/rma/serializers.py
from __future__ import annotations

from rest_framework import serializers

from domains.shipments.serializers import ShipmentInputSerializer, ShipmentSerializer

from .models import Priority, RMACase, SLARecord, WorkflowHistory
from .rules import WorkflowRules
from .state_machine import ACTIONS


class SLARecordSerializer(serializers.ModelSerializer):
    class Meta:
        model = SLARecord
        fields = (
            "target_hours",
            "target_delivery_days",
            "outbound_delivery_days",
            "return_delivery_days",
            "outbound_breached",
            "return_breached",
            "sla_breached",
            "breach_reason",
            "breached_at",
        )
        read_only_fields = fields


class WorkflowHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = WorkflowHistory
        fields = ("action", "actor", "from_status", "to_status", "note", "created_at")
        read_only_fields = fields


class RMACaseListSerializer(serializers.ModelSerializer):
    sla_breached = serializers.BooleanField(source="sla.sla_breached", read_only=True, default=False)

    class Meta:
        model = RMACase
        fields = (
            "id",
            "case_number",
            "site_name",
            "serial_number",
            "product_name",
            "priority",
            "status",
            "assigned_to",
            "escalation_count",
            "sla_breached",
            "raised_at",
            "status_changed_at",
        )
        read_only_fields = fields


class RMACaseDetailSerializer(serializers.ModelSerializer):
    sla = SLARecordSerializer(read_only=True)
    shipments = ShipmentSerializer(many=True, read_only=True)
    history = WorkflowHistorySerializer(many=True, read_only=True)

    class Meta:
        model = RMACase
        fields = (
            "id",
            "case_number",
            "site_name",
            "product_name",
            "product_part_number",
            "serial_number",
            "call_log_number",
            "defective_part_number",
            "defective_part_name",
            "defective_serial_number",
            "replacement_part_number",
            "replacement_part_name",
            "replacement_serial_number",
            "symptoms",
            "notes",
            "priority",
            "warranty_status",
            "estimated_cost",
            "status",
            "status_changed_at",
            "assigned_to",
            "assigned_at",
            "escalated_at",
            "escalation_reason",
            "escalation_count",
            "raised_at",
            "created_at",
            "updated_at",
            "sla",
            "shipments",
            "history",
        )
        read_only_fields = fields


class RMACaseWriteSerializer(serializers.ModelSerializer):
    """접수/수정 입력. 상태·배정 이력·배송은 전용 액션으로만 바뀐다."""

    assigned_to = serializers.CharField(required=False, allow_blank=True, max_length=200)
    raised_at = serializers.DateTimeField(required=False)

    class Meta:
        model = RMACase
        fields = (
            "site_name",
            "product_name",
            "product_part_number",
            "serial_number",
            "call_log_number",
            "defective_part_number",
            "defective_part_name",
            "defective_serial_number",
            "replacement_part_number",
            "replacement_part_name",
            "replacement_serial_number",
            "symptoms",
            "notes",
            "priority",
            "warranty_status",
            "estimated_cost",
            "assigned_to",
            "raised_at",
        )

    def validate_estimated_cost(self, v):
        if v is not None and v < 0:
            raise serializers.ValidationError("estimated_cost must be >= 0")
        return v


# ---------------------------
# 워크플로 입력
# ---------------------------
class WorkflowProcessSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=sorted(set(ACTIONS) | {"assign"}))
    note = serializers.CharField(required=False, allow_blank=True)
    assignee = serializers.CharField(required=False, allow_blank=True, max_length=200)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)
    shipment = ShipmentInputSerializer(required=False)
    actual_delivery = serializers.DateTimeField(required=False)

    def to_action_data(self):
        """엔진에 넘길 평탄화된 dict (배송 정보는 최상위로)."""
        data = dict(self.validated_data)
        data.pop("action", None)
        data.update(data.pop("shipment", None) or {})
        return data


class AssignSerializer(serializers.Serializer):
    assignee = serializers.CharField(required=False, allow_blank=True, max_length=200)


class WorkflowRulesSerializer(serializers.Serializer):
    """규칙 테이블 전체. PUT 시 전체 교체."""

    assignment_by_priority = serializers.DictField(child=serializers.CharField())
    assignment_by_status = serializers.DictField(child=serializers.CharField())
    default_assignee = serializers.CharField(max_length=200)
    sla_hours = serializers.DictField(child=serializers.IntegerField(min_value=1))
    escalation_hours = serializers.DictField(child=serializers.FloatField(min_value=0.1))

    def validate_assignment_by_priority(self, value):
        unknown = set(value) - set(Priority.values)
        if unknown:
            raise serializers.ValidationError(f"unknown priorities: {sorted(unknown)}")
        return value

    def validate_sla_hours(self, value):
        return self.validate_assignment_by_priority(value)

    def to_rules(self) -> WorkflowRules:
        try:
            return WorkflowRules.from_dict(self.validated_data)
        except ValueError as e:
            raise serializers.ValidationError({"detail": str(e)})
