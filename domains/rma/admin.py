from __future__ import annotations

from django.contrib import admin, messages

from domains.shipments.models import Shipment

from .models import CaseSequence, RMACase, SLARecord, WorkflowHistory
from .workflow import engine


class WorkflowHistoryInline(admin.TabularInline):
    model = WorkflowHistory
    extra = 0
    can_delete = False
    readonly_fields = ("created_at", "action", "actor", "from_status", "to_status", "note")
    fields = readonly_fields

    def has_add_permission(self, request, obj=None):
        return False


class ShipmentInline(admin.StackedInline):
    model = Shipment
    extra = 0
    can_delete = False
    fields = ("direction", "carrier_code", "tracking_number", "status", "shipped_at", "actual_delivery", "last_error")
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


class SLARecordInline(admin.StackedInline):
    model = SLARecord
    can_delete = False
    readonly_fields = (
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


@admin.register(RMACase)
class RMACaseAdmin(admin.ModelAdmin):
    inlines = [SLARecordInline, ShipmentInline, WorkflowHistoryInline]
    list_display = (
        "case_number",
        "site_name",
        "serial_number",
        "priority",
        "status",
        "assigned_to",
        "escalation_count",
        "raised_at",
    )
    list_filter = ("status", "priority", "warranty_status")
    search_fields = ("case_number", "serial_number", "site_name", "assigned_to")
    # 상태/배정은 워크플로 액션으로만 변경
    readonly_fields = (
        "case_number",
        "status",
        "status_changed_at",
        "assigned_to",
        "assigned_at",
        "escalated_at",
        "escalation_reason",
        "escalation_count",
        "created_at",
        "updated_at",
    )
    ordering = ("-raised_at",)
    actions = ["auto_assign"]

    @admin.action(description="Re-run auto assignment")
    def auto_assign(self, request, queryset):
        for case_id in queryset.values_list("pk", flat=True):
            engine.auto_assign(case_id, actor=request.user.get_username())
        self.message_user(request, f"{queryset.count()} case(s) reassigned")


@admin.register(SLARecord)
class SLARecordAdmin(admin.ModelAdmin):
    list_display = ("case", "target_delivery_days", "outbound_delivery_days", "return_delivery_days", "sla_breached")
    list_filter = ("sla_breached", "outbound_breached", "return_breached")
    search_fields = ("case__case_number",)
    list_select_related = ("case",)
    actions = ["reset_breach"]

    @admin.action(description="Reset SLA breach flags")
    def reset_breach(self, request, queryset):
        for record in queryset:
            record.reset()
        self.message_user(request, f"{queryset.count()} SLA record(s) reset", level=messages.WARNING)


@admin.register(CaseSequence)
class CaseSequenceAdmin(admin.ModelAdmin):
    list_display = ("year", "last_value")
    ordering = ("-year",)
