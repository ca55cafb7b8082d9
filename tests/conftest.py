# tests/conftest.py
from uuid import uuid4

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.cache import cache

import pytest
from rest_framework.test import APIClient

from tests.factories import create_carrier, create_case

User = get_user_model()


# ─────────────────────────────────────────────────────────────
# 전역 테스트 환경 최적화(해싱/캐시/브로커)
# ─────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True, scope="session")
def _fast_password_hasher(django_db_setup, django_db_blocker):
    """
    해시 느린 기본 해셔 대신 MD5 해셔 사용, Celery 는 브로커 없이 즉시 실행
    """
    with django_db_blocker.unblock():
        settings.PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]
        settings.CELERY_TASK_ALWAYS_EAGER = True


@pytest.fixture(autouse=True)
def _clear_cache():
    """규칙 테이블/스윕 락이 테스트 간에 새지 않도록"""
    from domains.rma.rules import rules_store

    cache.clear()
    rules_store.reset()
    yield
    cache.clear()
    rules_store.reset()


@pytest.fixture(autouse=True)
def _no_outbound_notifications(monkeypatch):
    """on_commit 으로 큐잉되는 알림 태스크는 실제로 보내지 않는다"""
    sent = []

    def fake_delay(kind, payload):
        sent.append((kind, payload))

    monkeypatch.setattr("domains.shipments.tasks.notify.delay", fake_delay)
    monkeypatch.setattr("domains.shipments.tasks.refresh_case_tracking.delay", lambda *a, **k: None)
    return sent


@pytest.fixture
def notifications(_no_outbound_notifications):
    return _no_outbound_notifications


# ─────────────────────────────────────────────────────────────
# 클라이언트 & 인증
# ─────────────────────────────────────────────────────────────
@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def user(db):
    password = "Test1234!A"
    u = User.objects.create_user(
        username=f"user_{uuid4().hex[:6]}", email="tech@example.com", password=password
    )
    # 로그인 테스트용 원문 비밀번호 보관
    u.raw_password = password
    return u


@pytest.fixture
def admin(db):
    password = "Test1234!A"
    u = User.objects.create_user(
        username=f"admin_{uuid4().hex[:6]}",
        email="ops@example.com",
        password=password,
        is_staff=True,
        is_superuser=True,
    )
    u.raw_password = password
    return u


@pytest.fixture
def auth_client(user):
    c = APIClient()
    c.force_authenticate(user=user)
    return c


@pytest.fixture
def admin_client(admin):
    c = APIClient()
    c.force_authenticate(user=admin)
    return c


# ─────────────────────────────────────────────────────────────
# 도메인 기본 리소스
# ─────────────────────────────────────────────────────────────
@pytest.fixture
def blue_dart(db):
    return create_carrier(
        "BLUE_DART",
        name="Blue Dart",
        api_endpoint="https://api.bluedart.test",
        api_key="bd-key",
        tracking_pattern=r"^[A-Z]{2}[0-9]{9}[A-Z]{2}$",
        tracking_url_template="https://www.bluedart.com/track/{tracking_number}",
    )


@pytest.fixture
def dtdc(db):
    return create_carrier(
        "DTDC",
        name="DTDC",
        api_endpoint="https://api.dtdc.test",
        api_key="dtdc-key",
        tracking_pattern=r"^[0-9]{10,12}$",
    )


@pytest.fixture
def rma_case(db):
    return create_case()


@pytest.fixture
def case_factory(db):
    def _make(**kw):
        return create_case(**kw)

    return _make
