# api/v1/urls.py
from django.urls import include, path

from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

urlpatterns = [
    # --- Auth ---
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    # --- RMA / Workflow ---
    path("", include(("domains.rma.urls", "rma"))),
    # --- Tracking / Webhooks / Carriers ---
    path("", include(("domains.shipments.urls", "shipments"))),
]
