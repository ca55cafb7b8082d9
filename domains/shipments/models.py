from __future__ import annotations

import uuid
from typing import Optional

from django.db import models

from .adapters.base import CarrierConfig, UnknownCarrier


class ShipmentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PICKED_UP = "picked_up", "Picked Up"
    IN_TRANSIT = "in_transit", "In Transit"
    OUT_FOR_DELIVERY = "out_for_delivery", "Out For Delivery"
    DELIVERED = "delivered", "Delivered"
    EXCEPTION = "exception", "Exception"
    RETURNED = "returned", "Returned"


# 정상 진행 경로의 순위. exception/returned 는 순위 밖의 종료 분기
STATUS_RANK = {
    ShipmentStatus.PENDING: 0,
    ShipmentStatus.PICKED_UP: 1,
    ShipmentStatus.IN_TRANSIT: 2,
    ShipmentStatus.OUT_FOR_DELIVERY: 3,
    ShipmentStatus.DELIVERED: 4,
}

TERMINAL_STATUSES = frozenset(
    {ShipmentStatus.DELIVERED, ShipmentStatus.EXCEPTION, ShipmentStatus.RETURNED}
)
ACTIVE_STATUSES = frozenset(
    {ShipmentStatus.PICKED_UP, ShipmentStatus.IN_TRANSIT, ShipmentStatus.OUT_FOR_DELIVERY}
)


class ShipmentDirection(models.TextChoices):
    OUTBOUND = "outbound", "Outbound"
    RETURN = "return", "Return"


class EventSource(models.TextChoices):
    API = "api", "API Poll"
    WEBHOOK = "webhook", "Webhook"
    MANUAL = "manual", "Manual"


class Carrier(models.Model):
    """택배사 설정. 엔진 입장에서는 읽기 전용 (관리자/커맨드로만 변경)."""

    code = models.CharField(max_length=40, unique=True)
    name = models.CharField(max_length=80)
    display_name = models.CharField(max_length=120, blank=True)

    api_endpoint = models.URLField(blank=True)
    api_key = models.CharField(max_length=255, blank=True)
    api_secret = models.CharField(max_length=255, blank=True)
    webhook_secret = models.CharField(max_length=255, blank=True)

    # {tracking_number} 자리표시자를 치환
    tracking_url_template = models.CharField(max_length=255, blank=True)
    tracking_pattern = models.CharField(max_length=120, blank=True)

    # 자체 API 대신 중계사(aggregator)를 쓰는 경우
    aggregator = models.CharField(max_length=40, blank=True)
    aggregator_slug = models.CharField(max_length=60, blank=True)

    is_active = models.BooleanField(default=True)
    supports_webhooks = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("code",)

    def __str__(self) -> str:
        return self.display_name or self.name or self.code

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper().replace("-", "_").replace(" ", "_")
        super().save(*args, **kwargs)

    def to_config(self) -> CarrierConfig:
        return CarrierConfig(
            code=self.code,
            name=self.name,
            display_name=self.display_name or self.name,
            api_endpoint=(self.api_endpoint or "").rstrip("/"),
            api_key=self.api_key,
            api_secret=self.api_secret,
            webhook_secret=self.webhook_secret,
            tracking_url_template=self.tracking_url_template,
            tracking_pattern=self.tracking_pattern,
            aggregator=(self.aggregator or "").strip().lower(),
            aggregator_slug=self.aggregator_slug,
        )

    def validate_tracking_number(self, tracking_number: str) -> bool:
        return self.to_config().validate_tracking_number(tracking_number)

    def build_tracking_url(self, tracking_number: str):
        return self.to_config().build_tracking_url(tracking_number)


class Shipment(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    case = models.ForeignKey(
        "rma.RMACase", on_delete=models.CASCADE, related_name="shipments"
    )
    direction = models.CharField(max_length=10, choices=ShipmentDirection.choices)

    tracking_number = models.CharField(max_length=64, blank=True)
    carrier_code = models.CharField(max_length=40, blank=True)
    service_level = models.CharField(max_length=40, blank=True)

    status = models.CharField(
        max_length=24,
        choices=ShipmentStatus.choices,
        default=ShipmentStatus.PENDING,
    )
    current_location = models.CharField(max_length=200, blank=True)

    shipped_at = models.DateTimeField(null=True, blank=True)
    estimated_delivery = models.DateTimeField(null=True, blank=True)
    actual_delivery = models.DateTimeField(null=True, blank=True)
    last_updated = models.DateTimeField(null=True, blank=True)

    # 물리 속성
    weight_kg = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    length_cm = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    width_cm = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    height_cm = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    insured_value = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    requires_signature = models.BooleanField(default=False)

    last_synced_at = models.DateTimeField(null=True, blank=True)
    last_error = models.CharField(max_length=255, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(
                fields=["carrier_code", "tracking_number"],
                name="shipments_carrier_trk_idx",
            ),
            models.Index(fields=["tracking_number"], name="shipments_tracking_idx"),
            models.Index(fields=["status", "last_updated"], name="shipments_status_upd_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=("case", "direction"), name="uq_case_direction")
        ]

    def __str__(self) -> str:
        return f"{self.direction}:{self.carrier_code}:{self.tracking_number}"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def build_tracking_url(self, registry) -> Optional[str]:
        """registry 는 호출 측에서 한 번 로드해 여러 건에 재사용한다."""
        if not self.tracking_number:
            return None
        try:
            return registry.build_tracking_url(self.carrier_code, self.tracking_number)
        except UnknownCarrier:
            return None


class TrackingEvent(models.Model):
    """배송 이벤트 로그. 생성 후 수정하지 않는다 (보존기간 경과 시 정리 작업에서만 삭제)."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    shipment = models.ForeignKey(
        Shipment, on_delete=models.CASCADE, related_name="events"
    )
    direction = models.CharField(max_length=10, choices=ShipmentDirection.choices)
    occurred_at = models.DateTimeField()
    status = models.CharField(max_length=24, choices=ShipmentStatus.choices)
    location = models.CharField(max_length=200, blank=True)
    description = models.TextField(blank=True)

    carrier_code = models.CharField(max_length=40, blank=True)
    tracking_number = models.CharField(max_length=64, blank=True)
    source = models.CharField(max_length=20, choices=EventSource.choices)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("occurred_at", "created_at")
        indexes = [
            models.Index(
                fields=["shipment", "occurred_at"],
                name="shipments_evt_shipment_idx",
            ),
            models.Index(fields=["occurred_at"], name="shipments_evt_occurred_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.shipment_id}@{self.occurred_at}:{self.status}"
