from __future__ import annotations

import json

from django.contrib import admin, messages
from django.db.models import OuterRef, Subquery
from django.utils.html import format_html

from . import models
from .adapters.base import CarrierConfig, CarrierError
from .services import refresh_case


# ---------- TrackingEvent Inline ----------
class TrackingEventInline(admin.TabularInline):
    model = models.TrackingEvent
    extra = 0
    can_delete = False
    ordering = ("occurred_at", "created_at")
    readonly_fields = ("occurred_at", "status", "location", "description", "source", "created_at")
    fields = readonly_fields

    def has_add_permission(self, request, obj=None):
        return False


# ---------- Carrier Admin ----------
@admin.register(models.Carrier)
class CarrierAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "aggregator", "is_active", "supports_webhooks", "updated_at")
    list_filter = ("is_active", "supports_webhooks", "aggregator")
    search_fields = ("code", "name", "display_name")
    ordering = ("code",)
    fieldsets = (
        (None, {"fields": ("code", "name", "display_name", "is_active")}),
        ("Tracking", {"fields": ("tracking_url_template", "tracking_pattern")}),
        ("API", {"fields": ("api_endpoint", "api_key", "api_secret", "aggregator", "aggregator_slug")}),
        ("Webhook", {"fields": ("supports_webhooks", "webhook_secret")}),
    )


# ---------- Shipment Admin ----------
@admin.register(models.Shipment)
class ShipmentAdmin(admin.ModelAdmin):
    inlines = [TrackingEventInline]

    list_display = (
        "case",
        "direction",
        "carrier_code",
        "tracking_link",
        "status",
        "last_updated",
        "last_error_short",
    )
    list_filter = ("direction", "status", "carrier_code")
    search_fields = ("tracking_number", "case__case_number")
    readonly_fields = ("id", "created_at", "updated_at", "last_updated", "last_synced_at", "last_error")
    list_select_related = ("case",)
    ordering = ("-last_updated",)
    actions = ["refresh_tracking"]

    def get_queryset(self, request):
        # 목록 행마다 Carrier 를 따로 읽지 않도록 URL 템플릿을 함께 조회
        template = models.Carrier.objects.filter(code=OuterRef("carrier_code")).values("tracking_url_template")[:1]
        return super().get_queryset(request).annotate(carrier_url_template=Subquery(template))

    def tracking_link(self, obj):
        config = CarrierConfig(
            code=obj.carrier_code,
            tracking_url_template=getattr(obj, "carrier_url_template", None) or "",
        )
        url = config.build_tracking_url(obj.tracking_number) if obj.tracking_number else None
        if not url:
            return obj.tracking_number or "-"
        return format_html("<a href='{}' target='_blank'>{}</a>", url, obj.tracking_number)
    tracking_link.short_description = "Tracking"

    def last_error_short(self, obj):
        return (obj.last_error or "")[:60] or "-"
    last_error_short.short_description = "Last error"

    @admin.action(description="Refresh tracking now")
    def refresh_tracking(self, request, queryset):
        created = 0
        for case_id in set(queryset.values_list("case_id", flat=True)):
            try:
                created += refresh_case(case_id)
            except CarrierError as e:
                self.message_user(request, f"{case_id}: {e}", level=messages.WARNING)
        self.message_user(request, f"{created} tracking event(s) created")


# ---------- TrackingEvent Admin ----------
@admin.register(models.TrackingEvent)
class TrackingEventAdmin(admin.ModelAdmin):
    list_display = ("occurred_at", "tracking_number", "direction", "status", "source", "location")
    list_filter = ("source", "status", "direction")
    search_fields = ("tracking_number", "description")
    readonly_fields = ("metadata_pretty",)
    ordering = ("-occurred_at",)

    def metadata_pretty(self, obj):
        if not obj.metadata:
            return "-"
        return format_html(
            "<pre style='white-space:pre-wrap'>{}</pre>",
            json.dumps(obj.metadata, ensure_ascii=False, indent=2),
        )
