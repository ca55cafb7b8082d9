# tests/test_carrier_registry.py
import pytest

from domains.shipments.adapters.base import UnknownCarrier
from domains.shipments.adapters.bluedart import BlueDartAdapter
from domains.shipments.adapters.provider import CarrierRegistry
from domains.shipments.adapters.trackingmore import TrackingMoreAdapter
from domains.shipments.serializers import ShipmentSerializer
from tests.factories import create_carrier, create_case, create_shipment

pytestmark = pytest.mark.django_db


def test_load_only_active_carriers(blue_dart):
    create_carrier("DHL", is_active=False)
    registry = CarrierRegistry.load()
    assert registry.codes == ["BLUE_DART"]

    with pytest.raises(UnknownCarrier):
        registry.get("DHL")


def test_resolve_by_alias(blue_dart):
    adapter = CarrierRegistry.load().resolve("bluedart")
    assert isinstance(adapter, BlueDartAdapter)
    assert adapter.config.api_key == "bd-key"


def test_env_credentials_override_db_values(blue_dart, settings):
    settings.CARRIER_CREDENTIALS = {
        "BLUE_DART": {"api_key": "env-key", "api_secret": "", "api_endpoint": "https://env.bluedart.test"}
    }
    config = CarrierRegistry.load().get("BLUE_DART")
    assert config.api_key == "env-key"
    assert config.api_endpoint == "https://env.bluedart.test"
    # 빈 값은 DB 설정을 유지
    assert config.tracking_pattern == r"^[A-Z]{2}[0-9]{9}[A-Z]{2}$"


def test_aggregator_carrier_resolves_to_aggregator_adapter():
    create_carrier("ECOM_EXPRESS", aggregator="TrackingMore", aggregator_slug="ecom-express")
    adapter = CarrierRegistry.load().resolve("ECOM_EXPRESS")
    assert isinstance(adapter, TrackingMoreAdapter)
    assert adapter.config.aggregator_slug == "ecom-express"


def test_carrier_without_adapter_is_unknown():
    create_carrier("NEW_CARRIER")
    with pytest.raises(UnknownCarrier):
        CarrierRegistry.load().resolve("NEW_CARRIER")


def test_validate_and_build_url(blue_dart):
    registry = CarrierRegistry.load()
    assert registry.validate_tracking_number("BLUE_DART", "BD123456789IN")
    assert not registry.validate_tracking_number("BLUE_DART", "123")
    assert (
        registry.build_tracking_url("BLUE_DART", "BD123456789IN")
        == "https://www.bluedart.com/track/BD123456789IN"
    )


def test_registry_reloads_configuration(blue_dart):
    first = CarrierRegistry.load()
    blue_dart.is_active = False
    blue_dart.save()
    assert "BLUE_DART" in first.codes
    assert CarrierRegistry.load().codes == []


def test_shipment_list_loads_carriers_once(blue_dart, django_assert_num_queries):
    shipments = [
        create_shipment(create_case(status="replacement_shipped")),
        create_shipment(create_case(status="replacement_shipped")),
        create_shipment(create_case(status="replacement_shipped"), carrier_code="OWN_FLEET"),
    ]

    with django_assert_num_queries(1):
        data = ShipmentSerializer(shipments, many=True).data

    assert [row["tracking_url"] for row in data] == [
        "https://www.bluedart.com/track/BD123456789IN",
        "https://www.bluedart.com/track/BD123456789IN",
        None,
    ]
