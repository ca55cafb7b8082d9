from django.urls import path

from .views import (
    CarrierListAPI,
    CaseTrackingAPI,
    CaseTrackingRefreshAPI,
    DeliveryWebhookAPI,
    WebhookHealthAPI,
)

app_name = "shipments"

urlpatterns = [
    path("webhooks/health/", WebhookHealthAPI.as_view(), name="webhook-health"),
    path("webhooks/delivery/<str:carrier>/", DeliveryWebhookAPI.as_view(), name="delivery-webhook"),
    path("carriers/", CarrierListAPI.as_view(), name="carrier-list"),
    path("rma/<uuid:case_id>/tracking/", CaseTrackingAPI.as_view(), name="case-tracking"),
    path(
        "rma/<uuid:case_id>/tracking/refresh/",
        CaseTrackingRefreshAPI.as_view(),
        name="case-tracking-refresh",
    ),
]
