from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone


class CaseStatus(models.TextChoices):
    UNDER_REVIEW = "under_review", "Under Review"
    SENT_TO_VENDOR = "sent_to_vendor", "Sent to Vendor"
    VENDOR_APPROVED = "vendor_approved", "Vendor Approved"
    REPLACEMENT_SHIPPED = "replacement_shipped", "Replacement Shipped"
    REPLACEMENT_RECEIVED = "replacement_received", "Replacement Received"
    INSTALLATION_COMPLETE = "installation_complete", "Installation Complete"
    FAULTY_PART_RETURNED = "faulty_part_returned", "Faulty Part Returned"
    VENDOR_CONFIRMED_RETURN = "vendor_confirmed_return", "Vendor Confirmed Return"
    COMPLETED = "completed", "Completed"
    REJECTED = "rejected", "Rejected"


TERMINAL_CASE_STATUSES = frozenset({CaseStatus.COMPLETED, CaseStatus.REJECTED})


class Priority(models.TextChoices):
    LOW = "Low", "Low"
    MEDIUM = "Medium", "Medium"
    HIGH = "High", "High"
    CRITICAL = "Critical", "Critical"


class WarrantyStatus(models.TextChoices):
    IN_WARRANTY = "In Warranty", "In Warranty"
    EXTENDED = "Extended Warranty", "Extended Warranty"
    OUT_OF_WARRANTY = "Out of Warranty", "Out of Warranty"
    EXPIRED = "Expired", "Expired"


class CaseSequence(models.Model):
    """연도별 케이스 번호 카운터. 발급 시 select_for_update 로 잠근다."""

    year = models.PositiveIntegerField(unique=True)
    last_value = models.PositiveIntegerField(default=0)

    def __str__(self) -> str:
        return f"{self.year}:{self.last_value}"


class RMACase(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    case_number = models.CharField(max_length=32, unique=True, editable=False)

    # 접수 정보 (사이트/장비는 식별자로만 참조)
    site_name = models.CharField(max_length=200)
    product_name = models.CharField(max_length=200, blank=True)
    product_part_number = models.CharField(max_length=100, blank=True)
    serial_number = models.CharField(max_length=100)
    call_log_number = models.CharField(max_length=100, blank=True)

    defective_part_number = models.CharField(max_length=100, blank=True)
    defective_part_name = models.CharField(max_length=200, blank=True)
    defective_serial_number = models.CharField(max_length=100, blank=True)
    replacement_part_number = models.CharField(max_length=100, blank=True)
    replacement_part_name = models.CharField(max_length=200, blank=True)
    replacement_serial_number = models.CharField(max_length=100, blank=True)

    symptoms = models.TextField(blank=True)
    notes = models.TextField(blank=True)

    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.MEDIUM)
    warranty_status = models.CharField(
        max_length=20, choices=WarrantyStatus.choices, default=WarrantyStatus.IN_WARRANTY
    )
    estimated_cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    # 워크플로
    status = models.CharField(
        max_length=32, choices=CaseStatus.choices, default=CaseStatus.UNDER_REVIEW
    )
    status_changed_at = models.DateTimeField(default=timezone.now)
    assigned_to = models.CharField(max_length=200, blank=True)
    assigned_at = models.DateTimeField(null=True, blank=True)
    escalated_at = models.DateTimeField(null=True, blank=True)
    escalation_reason = models.CharField(max_length=255, blank=True)
    escalation_count = models.PositiveIntegerField(default=0)

    raised_at = models.DateTimeField(default=timezone.now)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="rma_cases",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)
        indexes = [
            models.Index(fields=["status", "status_changed_at"], name="rma_status_changed_idx"),
            models.Index(fields=["priority", "status"], name="rma_priority_status_idx"),
            models.Index(fields=["serial_number"], name="rma_serial_idx"),
        ]

    def __str__(self) -> str:
        return self.case_number or str(self.id)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CASE_STATUSES

    def shipment(self, direction: str):
        return self.shipments.filter(direction=direction).first()


class WorkflowHistory(models.Model):
    """상태 전이/배정/에스컬레이션 기록. 배송 이벤트 로그와 별개."""

    case = models.ForeignKey(RMACase, on_delete=models.CASCADE, related_name="history")
    action = models.CharField(max_length=40)
    actor = models.CharField(max_length=200, blank=True)
    from_status = models.CharField(max_length=32, blank=True)
    to_status = models.CharField(max_length=32, blank=True)
    note = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ("created_at", "id")
        indexes = [models.Index(fields=["case", "created_at"], name="rma_history_case_idx")]

    def __str__(self) -> str:
        return f"{self.case_id}:{self.action}"


class SLARecord(models.Model):
    case = models.OneToOneField(RMACase, on_delete=models.CASCADE, related_name="sla")

    target_hours = models.PositiveIntegerField(default=72)
    target_delivery_days = models.PositiveIntegerField(default=3)

    outbound_delivery_days = models.PositiveIntegerField(null=True, blank=True)
    return_delivery_days = models.PositiveIntegerField(null=True, blank=True)

    # 한 번 True 가 되면 reset() 외에는 내려가지 않는다
    outbound_breached = models.BooleanField(default=False)
    return_breached = models.BooleanField(default=False)
    sla_breached = models.BooleanField(default=False)
    breach_reason = models.CharField(max_length=255, blank=True)
    breached_at = models.DateTimeField(null=True, blank=True)

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["sla_breached"], name="rma_sla_breached_idx")]

    def __str__(self) -> str:
        return f"SLA<{self.case_id}> breached={self.sla_breached}"

    def reset(self) -> None:
        """관리자 재설정. 위반 플래그를 내리는 유일한 경로."""
        self.outbound_delivery_days = None
        self.return_delivery_days = None
        self.outbound_breached = False
        self.return_breached = False
        self.sla_breached = False
        self.breach_reason = ""
        self.breached_at = None
        self.save()
