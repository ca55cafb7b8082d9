from django.apps import AppConfig


class RmaConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "domains.rma"
    label = "rma"  # Shipment.case 가 "rma.RMACase" 로 참조
