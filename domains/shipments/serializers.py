from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema_field
from rest_framework import serializers

from .adapters.provider import CarrierRegistry
from .models import Carrier, Shipment, TrackingEvent


# ---------------------------
# 출력용
# ---------------------------
class TrackingEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = TrackingEvent
        fields = (
            "id",
            "direction",
            "occurred_at",
            "status",
            "location",
            "description",
            "carrier_code",
            "tracking_number",
            "source",
            "created_at",
        )


class ShipmentSerializer(serializers.ModelSerializer):
    tracking_url = serializers.SerializerMethodField()
    is_terminal = serializers.BooleanField(read_only=True)

    class Meta:
        model = Shipment
        fields = (
            "id",
            "direction",
            "carrier_code",
            "tracking_number",
            "tracking_url",
            "service_level",
            "status",
            "is_terminal",
            "current_location",
            "shipped_at",
            "estimated_delivery",
            "actual_delivery",
            "last_updated",
            "last_synced_at",
            "last_error",
            "weight_kg",
            "requires_signature",
        )

    @extend_schema_field(OpenApiTypes.URI)
    def get_tracking_url(self, obj):
        # 목록 직렬화 시 택배사 설정은 한 번만 로드
        registry = self.context.get("carrier_registry")
        if registry is None:
            registry = self.context["carrier_registry"] = CarrierRegistry.load()
        return obj.build_tracking_url(registry)


class CarrierSerializer(serializers.ModelSerializer):
    # 자격증명(api_key/api_secret/webhook_secret)은 노출하지 않음
    class Meta:
        model = Carrier
        fields = (
            "code",
            "name",
            "display_name",
            "tracking_url_template",
            "tracking_pattern",
            "aggregator",
            "supports_webhooks",
            "is_active",
        )


# ---------------------------
# 입력용
# ---------------------------
class ShipmentInputSerializer(serializers.Serializer):
    """발송/반송 등록 시 배송 정보. carrier / carrier_code 둘 다 받는다."""

    carrier_code = serializers.CharField(required=False, allow_blank=True, max_length=40)
    carrier = serializers.CharField(required=False, allow_blank=True, max_length=40)
    tracking_number = serializers.CharField(required=False, allow_blank=True, max_length=64)
    service_level = serializers.CharField(required=False, allow_blank=True, max_length=40)
    shipped_at = serializers.DateTimeField(required=False)
    estimated_delivery = serializers.DateTimeField(required=False)
    weight_kg = serializers.DecimalField(max_digits=8, decimal_places=2, required=False)
    length_cm = serializers.DecimalField(max_digits=8, decimal_places=2, required=False)
    width_cm = serializers.DecimalField(max_digits=8, decimal_places=2, required=False)
    height_cm = serializers.DecimalField(max_digits=8, decimal_places=2, required=False)
    insured_value = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    requires_signature = serializers.BooleanField(required=False)

    def validate(self, attrs):
        attrs["carrier_code"] = (attrs.get("carrier_code") or attrs.pop("carrier", "") or "").strip()
        attrs.pop("carrier", None)
        attrs["tracking_number"] = (attrs.get("tracking_number") or "").strip()
        return attrs
