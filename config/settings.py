# config/settings.py

import json
import os
from pathlib import Path
from datetime import timedelta
from dotenv import load_dotenv

# ──────────────────────────────────────────────────────────────────────────────
# Base & Env (환경별 .env 자동 로딩)
# ──────────────────────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent

# DJANGO_ENV 에 따라 .env.<DJANGO_ENV> → .env 순서로 로드
# 예) dev → .env.dev, prod → .env.prod
DJANGO_ENV = os.getenv("DJANGO_ENV", "dev").strip().lower()
env_file = BASE_DIR / f".env.{DJANGO_ENV}"
if env_file.exists():
    load_dotenv(env_file, override=True)

# 공통 키 보완용(.env). 이미 로드된 값은 유지(override=False)
common_env = BASE_DIR / ".env"
if common_env.exists():
    load_dotenv(common_env, override=False)


def _env_bool(name: str, default: str = "0") -> bool:
    # "1/true/yes/on" 다 허용 (대소문자 무시)
    return str(os.getenv(name, default)).strip().lower() in ("1", "true", "yes", "on")


def _env_json(name: str, default):
    raw = os.getenv(name, "").strip()
    return json.loads(raw) if raw else default


# ──────────────────────────────────────────────────────────────────────────────
# Core Settings
# ──────────────────────────────────────────────────────────────────────────────
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-secret")
DEBUG = _env_bool("DEBUG", "1")
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost").split(",")

# ──────────────────────────────────────────────────────────────────────────────
# Applications
# ──────────────────────────────────────────────────────────────────────────────
INSTALLED_APPS = [
    # Django
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "django_celery_beat",

    # 3rd party
    "rest_framework",
    "rest_framework_simplejwt",
    "rest_framework_simplejwt.token_blacklist",
    "django_filters",
    "drf_spectacular",
    "corsheaders",

    # Domain apps
    "domains.shipments",
    "domains.rma",
]

# ──────────────────────────────────────────────────────────────────────────────
# Middleware
# ──────────────────────────────────────────────────────────────────────────────
MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

# ──────────────────────────────────────────────────────────────────────────────
# URL & Templates
# ──────────────────────────────────────────────────────────────────────────────
ROOT_URLCONF = "config.urls"
APPEND_SLASH = True

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [BASE_DIR / "templates"],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"

# ──────────────────────────────────────────────────────────────────────────────
# Database (PostgreSQL, DB_NAME 미설정 시 로컬 SQLite)
# ──────────────────────────────────────────────────────────────────────────────
if os.getenv("DB_NAME"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("DB_NAME"),
            "USER": os.getenv("DB_USER"),
            "PASSWORD": os.getenv("DB_PASSWORD"),
            "HOST": os.getenv("DB_HOST"),
            "PORT": os.getenv("DB_PORT", "5432"),
            "CONN_MAX_AGE": int(os.getenv("DJANGO_DB_CONN_MAX_AGE", "60")),
            "OPTIONS": {"sslmode": os.getenv("DJANGO_DB_SSLMODE", "require")},
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ──────────────────────────────────────────────────────────────────────────────
# Cache (규칙 테이블 공유 + 폴링 스윕 락)
# ──────────────────────────────────────────────────────────────────────────────
REDIS_CACHE_URL = os.getenv("REDIS_CACHE_URL", "")
if REDIS_CACHE_URL:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.redis.RedisCache",
            "LOCATION": REDIS_CACHE_URL,
        }
    }
else:
    CACHES = {"default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"}}

# ──────────────────────────────────────────────────────────────────────────────
# Internationalization
# ──────────────────────────────────────────────────────────────────────────────
LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("TIME_ZONE", "Asia/Kolkata")
USE_I18N = True
USE_TZ = True

# ──────────────────────────────────────────────────────────────────────────────
# Static Files
# ──────────────────────────────────────────────────────────────────────────────
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"},
}

# ──────────────────────────────────────────────────────────────────────────────
# DRF & OpenAPI
# ──────────────────────────────────────────────────────────────────────────────
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
    ],
    "EXCEPTION_HANDLER": "shared.errors.exception_handler",
}

SPECTACULAR_SETTINGS = {
    "TITLE": "RMA Tracking API",
    "DESCRIPTION": "RMA workflow / shipment tracking endpoints with JWT (Bearer).",
    "VERSION": "1.0.0",
    "SCHEMA_PATH_PREFIX": r"/api/v1",
    "SERVE_INCLUDE_SCHEMA": False,
    "COMPONENT_SPLIT_REQUEST": True,
    "SECURITY": [{"BearerAuth": []}],
    "COMPONENTS": {
        "securitySchemes": {
            "BearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"},
        }
    },
    "DISABLE_ERRORS_AND_WARNINGS": True,
    "SWAGGER_UI_SETTINGS": {
        "deepLinking": True,
        "displayRequestDuration": True,
        "persistAuthorization": True,
    },
    "SERVERS": [{"url": "/"}],
    "ENUM_NAME_OVERRIDES": {
        "ShipmentStatusEnum": "domains.shipments.models.ShipmentStatus",
        "CaseStatusEnum": "domains.rma.models.CaseStatus",
    },
}

# ──────────────────────────────────────────────────────────────────────────────
# JWT (SimpleJWT)
# ──────────────────────────────────────────────────────────────────────────────
SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=int(os.getenv("ACCESS_MIN", "60"))),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=int(os.getenv("REFRESH_DAYS", "7"))),
    "ROTATE_REFRESH_TOKENS": True,
    "BLACKLIST_AFTER_ROTATION": True,
    "AUTH_HEADER_TYPES": ("Bearer",),
}

# ──────────────────────────────────────────────────────────────────────────────
# Security, CORS & CSRF
# ──────────────────────────────────────────────────────────────────────────────
COOKIE_SECURE = not DEBUG
SESSION_COOKIE_SECURE = COOKIE_SECURE
CSRF_COOKIE_SECURE = COOKIE_SECURE
SESSION_COOKIE_SAMESITE = "Lax"
CSRF_COOKIE_SAMESITE = "Lax"

CORS_ALLOWED_ORIGINS = [
    o for o in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",") if o
]
CORS_ALLOW_CREDENTIALS = True
CSRF_TRUSTED_ORIGINS = CORS_ALLOWED_ORIGINS

# ──────────────────────────────────────────────────────────────────────────────
# Password Validation
# ──────────────────────────────────────────────────────────────────────────────
AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
]

# ──────────────────────────────────────────────────────────────────────────────
# Logging
# ──────────────────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "default"},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "domains": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "shared": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "celery": {"handlers": ["console"], "level": "INFO", "propagate": False},
    },
}

# ──────────────────────────────────────────────────────────────────────────────
# Carriers / Tracking
# ──────────────────────────────────────────────────────────────────────────────
# 외부 택배사 API 타임아웃(초). 10~30 으로 보정
CARRIER_HTTP_TIMEOUT = int(os.getenv("CARRIER_HTTP_TIMEOUT", "15"))

# 택배사별 자격증명: CARRIER_<CODE>_API_KEY / _API_SECRET / _ENDPOINT
# 값이 있으면 DB(Carrier) 값보다 우선
_CARRIER_CODES = (
    "BLUE_DART", "DTDC", "FEDEX", "DHL", "INDIA_POST", "DELHIVERY", "ECOM_EXPRESS", "XPRESSBEES",
)
CARRIER_CREDENTIALS = {
    code: {
        "api_key": os.getenv(f"CARRIER_{code}_API_KEY", ""),
        "api_secret": os.getenv(f"CARRIER_{code}_API_SECRET", ""),
        "api_endpoint": os.getenv(f"CARRIER_{code}_ENDPOINT", ""),
    }
    for code in _CARRIER_CODES
}

# 집계 서비스(aggregator) 연동
TRACKINGMORE_API_KEY = os.getenv("TRACKINGMORE_API_KEY", "")
TRACKINGMORE_HOST = os.getenv("TRACKINGMORE_HOST", "https://api.trackingmore.com")

TRACKING_MAX_WORKERS = int(os.getenv("TRACKING_MAX_WORKERS", "8"))
TRACKING_EVENT_RETENTION_DAYS = int(os.getenv("TRACKING_EVENT_RETENTION_DAYS", "30"))
TRACKING_ACTIVE_POLL_MINUTES = int(os.getenv("TRACKING_ACTIVE_POLL_MINUTES", "30"))
TRACKING_FULL_POLL_MINUTES = int(os.getenv("TRACKING_FULL_POLL_MINUTES", "120"))

# 웹훅: 서명 키가 없는 택배사의 웹훅을 거부할지
WEBHOOK_REQUIRE_SIGNATURE = _env_bool("WEBHOOK_REQUIRE_SIGNATURE", "0")

# ──────────────────────────────────────────────────────────────────────────────
# RMA Workflow
# ──────────────────────────────────────────────────────────────────────────────
RMA_SLA_HOURS = _env_json("RMA_SLA_HOURS", {"Critical": 4, "High": 24, "Medium": 72, "Low": 168})
RMA_TARGET_DELIVERY_DAYS = int(os.getenv("RMA_TARGET_DELIVERY_DAYS", "3"))
RMA_ESCALATION_HOURS = _env_json(
    "RMA_ESCALATION_HOURS", {"under_review": 48, "sent_to_vendor": 72, "vendor_approved": 24}
)
RMA_ASSIGNMENT_BY_PRIORITY = _env_json(
    "RMA_ASSIGNMENT_BY_PRIORITY",
    {"Critical": "manager@company.com", "High": "senior-technician@company.com"},
)
RMA_ASSIGNMENT_BY_STATUS = _env_json(
    "RMA_ASSIGNMENT_BY_STATUS",
    {"under_review": "review-team@company.com", "vendor_approved": "logistics@company.com"},
)
RMA_DEFAULT_ASSIGNEE = os.getenv("RMA_DEFAULT_ASSIGNEE", "default-technician@company.com")
RMA_ESCALATION_POLL_MINUTES = int(os.getenv("RMA_ESCALATION_POLL_MINUTES", "60"))

# 알림 수신 URL (미설정 시 로그만)
RMA_NOTIFY_WEBHOOK = os.getenv("RMA_NOTIFY_WEBHOOK", "")

# ──────────────────────────────────────────────────────────────────────────────
# Celery Configuration
# ──────────────────────────────────────────────────────────────────────────────
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
_result_env = os.environ.get("CELERY_RESULT_BACKEND")
CELERY_RESULT_BACKEND = _result_env or None
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TIME_LIMIT = 60 * 10
CELERY_TASK_TRACK_STARTED = True
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_BROKER_CONNECTION_RETRY_ON_STARTUP = True
CELERY_TASK_IGNORE_RESULT = True
# 로컬/테스트: 브로커 없이 즉시 실행
CELERY_TASK_ALWAYS_EAGER = _env_bool("CELERY_TASK_ALWAYS_EAGER", "0")

CELERY_BEAT_SCHEDULER = "django_celery_beat.schedulers:DatabaseScheduler"
CELERY_BEAT_SCHEDULE = {
    "poll-active-shipments": {
        "task": "domains.shipments.tasks.poll_active_shipments",
        "schedule": TRACKING_ACTIVE_POLL_MINUTES * 60.0,
    },
    "poll-all-tracked-cases": {
        "task": "domains.shipments.tasks.poll_all_tracked_cases",
        "schedule": TRACKING_FULL_POLL_MINUTES * 60.0,
    },
    "daily-tracking-maintenance": {
        "task": "domains.shipments.tasks.daily_tracking_maintenance",
        "schedule": 24 * 60 * 60.0,
    },
    "auto-escalate-cases": {
        "task": "domains.rma.tasks.auto_escalate_cases",
        "schedule": RMA_ESCALATION_POLL_MINUTES * 60.0,
    },
}
