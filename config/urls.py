from django.contrib import admin
from django.urls import path, include, re_path
from django.views.generic import RedirectView
from django.http import JsonResponse
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView
from rest_framework.permissions import AllowAny


def healthz(_):
    return JsonResponse({"ok": True})


class OpenAPIV1(SpectacularAPIView):
    permission_classes = [AllowAny]


class SwaggerV1(SpectacularSwaggerView):
    permission_classes = [AllowAny]


urlpatterns = [
    # Admin
    path("admin/", admin.site.urls),

    # OpenAPI / Swagger
    path("api/v1/schema/", OpenAPIV1.as_view(), name="v1-schema"),
    path("api/v1/docs/", SwaggerV1.as_view(url_name="v1-schema"), name="v1-docs"),

    # 슬래시 없는 접근 → 슬래시 있는 경로로 301 정규화
    re_path(r"^api/v1/schema$", RedirectView.as_view(url="/api/v1/schema/", permanent=True)),
    re_path(r"^api/v1/docs$", RedirectView.as_view(url="/api/v1/docs/", permanent=True)),

    # API v1 엔드포인트
    path("api/v1/", include("api.v1.urls")),

    # 루트 → 문서
    path("", RedirectView.as_view(url="/api/v1/docs/", permanent=False)),

    # 헬스체크
    path("healthz/", healthz),
]
