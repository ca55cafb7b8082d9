# tests/test_load_carriers_command.py
from io import StringIO

import pytest
from django.core.management import call_command

from domains.shipments.models import Carrier
from tests.factories import create_carrier

pytestmark = pytest.mark.django_db


def test_seeds_reference_carriers_and_keeps_credentials():
    create_carrier("DTDC", api_key="secret-key", tracking_pattern="")
    out = StringIO()

    call_command("load_carriers", stdout=out)

    assert Carrier.objects.count() == 8
    dtdc = Carrier.objects.get(code="DTDC")
    assert dtdc.api_key == "secret-key"
    assert dtdc.tracking_pattern == r"^[0-9]{10,12}$"
    assert dtdc.validate_tracking_number("1234567890")
    assert "created=7 updated=1" in out.getvalue()


def test_deactivate_missing():
    create_carrier("LOCAL_VAN")
    call_command("load_carriers", "--deactivate-missing", stdout=StringIO())

    assert not Carrier.objects.get(code="LOCAL_VAN").is_active
    assert Carrier.objects.filter(is_active=True).count() == 8
