# domains/shipments/adapters/__init__.py
from .bluedart import BlueDartAdapter
from .delhivery import DelhiveryAdapter
from .dhl import DHLAdapter
from .dtdc import DTDCAdapter
from .ecomexpress import EcomExpressAdapter
from .fedex import FedExAdapter
from .indiapost import IndiaPostAdapter
from .trackingmore import TrackingMoreAdapter
from .xpressbees import XpressBeesAdapter

# 새 택배사는 어댑터 클래스 1개 + 여기 1줄
ADAPTERS = {
    "BLUE_DART": BlueDartAdapter,
    "DTDC": DTDCAdapter,
    "FEDEX": FedExAdapter,
    "DHL": DHLAdapter,
    "INDIA_POST": IndiaPostAdapter,
    "DELHIVERY": DelhiveryAdapter,
    "ECOM_EXPRESS": EcomExpressAdapter,
    "XPRESSBEES": XpressBeesAdapter,
}

AGGREGATORS = {
    "trackingmore": TrackingMoreAdapter,
}


__all__ = [
    "ADAPTERS",
    "AGGREGATORS",
    "BlueDartAdapter",
    "DHLAdapter",
    "DTDCAdapter",
    "DelhiveryAdapter",
    "EcomExpressAdapter",
    "FedExAdapter",
    "IndiaPostAdapter",
    "TrackingMoreAdapter",
    "XpressBeesAdapter",
]
