from __future__ import annotations

from typing import Dict, Literal

CanonicalStatus = Literal[
    "pending",
    "picked_up",
    "in_transit",
    "out_for_delivery",
    "delivered",
    "exception",
    "returned",
]


def _key(value) -> str:
    return str(value or "").strip().upper().replace("-", "_").replace(" ", "_")


# 웹훅/폴링 공통 어휘 (대문자 키)
_COMMON: Dict[str, CanonicalStatus] = {
    "PENDING": "pending",
    "BOOKED": "pending",
    "CREATED": "pending",
    "MANIFESTED": "pending",
    "INFO_RECEIVED": "pending",
    "PICKED_UP": "picked_up",
    "PICKUP": "picked_up",
    "COLLECTED": "picked_up",
    "IN_TRANSIT": "in_transit",
    "TRANSIT": "in_transit",
    "ARRIVED": "in_transit",
    "DEPARTED": "in_transit",
    "OUT_FOR_DELIVERY": "out_for_delivery",
    "DELIVERED": "delivered",
    "EXCEPTION": "exception",
    "FAILED": "exception",
    "UNDELIVERED": "exception",
    "NOT_DELIVERED": "exception",
    "LOST": "exception",
    "DAMAGED": "exception",
    "RETURNED": "returned",
    "RTO": "returned",
    "RETURN_TO_ORIGIN": "returned",
    "RETURNED_TO_SHIPPER": "returned",
}

# 택배사별 고유 코드. 공통 어휘보다 먼저 본다.
_CARRIER_VOCAB: Dict[str, Dict[str, CanonicalStatus]] = {
    "BLUE_DART": {
        "PU": "picked_up",
        "IT": "in_transit",
        "OD": "out_for_delivery",
        "DL": "delivered",
        "UD": "exception",
        "EX": "exception",
        "RT": "returned",
    },
    "DTDC": {
        "BKD": "pending",
        "PCUP": "picked_up",
        "INTRANSIT": "in_transit",
        "OUTDLV": "out_for_delivery",
        "OUT_FOR_DELIVERY": "out_for_delivery",
        "DLV": "delivered",
        "NONDLV": "exception",
        "RTO_DELIVERED": "returned",
    },
    "FEDEX": {
        "OC": "pending",
        "PU": "picked_up",
        "AR": "in_transit",
        "DP": "in_transit",
        "IT": "in_transit",
        "OD": "out_for_delivery",
        "DL": "delivered",
        "DE": "exception",
        "CA": "exception",
        "RS": "returned",
    },
    "DHL": {
        "PRE_TRANSIT": "pending",
        "UNKNOWN": "pending",
        "TRANSIT": "in_transit",
        "DELIVERED": "delivered",
        "FAILURE": "exception",
    },
    "DELHIVERY": {
        "MANIFESTED": "pending",
        "NOT_PICKED": "pending",
        "PICKED_UP": "picked_up",
        "IN_TRANSIT": "in_transit",
        "DISPATCHED": "out_for_delivery",
        "DELIVERED": "delivered",
        "RTO": "returned",
        "DTO": "returned",
    },
    "INDIA_POST": {
        "ITEM_BOOKED": "pending",
        "ITEM_DISPATCHED": "in_transit",
        "ITEM_RECEIVED": "in_transit",
        "OUT_FOR_DELIVERY": "out_for_delivery",
        "ITEM_DELIVERED": "delivered",
        "ITEM_RETURNED": "returned",
    },
    "ECOM_EXPRESS": {
        "SHIPMENT_PICKED_UP": "picked_up",
        "BAG_ADDED_TO_CONNECTION": "in_transit",
        "OUT_FOR_DELIVERY": "out_for_delivery",
        "SHIPMENT_DELIVERED": "delivered",
        "SHIPMENT_UNDELIVERED": "exception",
    },
    "XPRESSBEES": {
        "PKD": "picked_up",
        "IT": "in_transit",
        "OFD": "out_for_delivery",
        "DLVD": "delivered",
        "UD": "exception",
        "RTO": "returned",
    },
    # 중계사 delivery_status
    "TRACKINGMORE": {
        "INFORECEIVED": "pending",
        "NOTFOUND": "pending",
        "PENDING": "pending",
        "TRANSIT": "in_transit",
        "PICKUP": "out_for_delivery",
        "DELIVERED": "delivered",
        "UNDELIVERED": "exception",
        "EXCEPTION": "exception",
        "EXPIRED": "exception",
    },
}


def map_provider_status(carrier_code: str, provider_status) -> CanonicalStatus:
    """
    택배사 고유 상태 → 표준 ShipmentStatus 값.
    모르는 값은 오류 대신 pending 으로 둔다 (택배사가 새 상태값을 추가해도 깨지지 않도록).
    """
    key = _key(provider_status)
    if not key:
        return "pending"
    vocab = _CARRIER_VOCAB.get(_key(carrier_code), {})
    if key in vocab:
        return vocab[key]
    return _COMMON.get(key, "pending")
