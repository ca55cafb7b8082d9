import itertools
from datetime import timedelta

from django.utils import timezone

from domains.rma.models import CaseStatus, RMACase
from domains.rma.sla import recompute_sla
from domains.shipments.models import Carrier, Shipment, ShipmentStatus

_serial_seq = itertools.count(1)
_case_seq = itertools.count(1)


def create_carrier(code="BLUE_DART", **extra):
    fields = {
        "name": code.title().replace("_", " "),
        "api_endpoint": f"https://api.{code.lower()}.test",
        "is_active": True,
    }
    fields.update(extra)
    return Carrier.objects.create(code=code, **fields)


def create_case(status=CaseStatus.UNDER_REVIEW, priority="Medium", raised_hours_ago=0,
                status_hours_ago=0, **extra):
    """
    워크플로를 거치지 않고 원하는 상태의 케이스를 바로 만든다.
    - case_number 는 테스트용 순번
    - SLA 레코드까지 생성
    """
    now = timezone.now()
    n = next(_case_seq)
    fields = {
        "case_number": f"RMA-T-{n:04d}",
        "site_name": "Test Cinema",
        "product_name": "Projector X1",
        "serial_number": f"SN{next(_serial_seq):06d}",
        "priority": priority,
        "status": status,
        "raised_at": now - timedelta(hours=raised_hours_ago),
        "status_changed_at": now - timedelta(hours=status_hours_ago),
    }
    fields.update(extra)
    case = RMACase.objects.create(**fields)
    recompute_sla(case)
    return case


def create_shipment(case, direction="outbound", carrier_code="BLUE_DART",
                    tracking_number="BD123456789IN", status=ShipmentStatus.PENDING,
                    shipped_days_ago=0, **extra):
    fields = {
        "carrier_code": carrier_code,
        "tracking_number": tracking_number,
        "status": status,
        "shipped_at": timezone.now() - timedelta(days=shipped_days_ago),
        "last_updated": timezone.now(),
    }
    fields.update(extra)
    return Shipment.objects.create(case=case, direction=direction, **fields)
