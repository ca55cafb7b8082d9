from __future__ import annotations

from django.core.management.base import BaseCommand
from django.db import transaction

from domains.shipments.models import Carrier

# 기본 택배사 세트. 자격증명은 넣지 않는다 (CARRIER_<CODE>_API_KEY 등 환경변수로 주입)
REFERENCE_CARRIERS = [
    {
        "code": "BLUE_DART",
        "name": "Blue Dart",
        "display_name": "Blue Dart Express",
        "api_endpoint": "https://api.bluedart.com",
        "tracking_url_template": "https://www.bluedart.com/track/{tracking_number}",
        "tracking_pattern": r"^[A-Z]{2}[0-9]{9}[A-Z]{2}$",
    },
    {
        "code": "DTDC",
        "name": "DTDC",
        "display_name": "DTDC Express Limited",
        "api_endpoint": "https://api.dtdc.com",
        "tracking_url_template": "https://www.dtdc.com/track/{tracking_number}",
        "tracking_pattern": r"^[0-9]{10,12}$",
    },
    {
        "code": "FEDEX",
        "name": "FedEx",
        "display_name": "FedEx Corporation",
        "api_endpoint": "https://api.fedex.com",
        "tracking_url_template": "https://www.fedex.com/track/{tracking_number}",
        "tracking_pattern": r"^[0-9]{12}$",
    },
    {
        "code": "DHL",
        "name": "DHL",
        "display_name": "DHL Express",
        "api_endpoint": "https://api.dhl.com",
        "tracking_url_template": "https://www.dhl.com/track/{tracking_number}",
        "tracking_pattern": r"^[0-9]{10}$",
    },
    {
        "code": "INDIA_POST",
        "name": "India Post",
        "display_name": "India Post",
        "api_endpoint": "https://api.indiapost.gov.in",
        "tracking_url_template": "https://www.indiapost.gov.in/track/{tracking_number}",
        "tracking_pattern": r"^[A-Z]{2}[0-9]{9}[A-Z]{2}$",
    },
    {
        "code": "DELHIVERY",
        "name": "Delhivery",
        "display_name": "Delhivery Limited",
        "api_endpoint": "https://api.delhivery.com",
        "tracking_url_template": "https://www.delhivery.com/track/{tracking_number}",
        "tracking_pattern": r"^[0-9]{10,12}$",
    },
    {
        "code": "ECOM_EXPRESS",
        "name": "Ecom Express",
        "display_name": "Ecom Express Private Limited",
        "api_endpoint": "https://api.ecom-express.com",
        "tracking_url_template": "https://www.ecom-express.com/track/{tracking_number}",
        "tracking_pattern": r"^[0-9]{10,12}$",
    },
    {
        "code": "XPRESSBEES",
        "name": "XpressBees",
        "display_name": "XpressBees Logistics Private Limited",
        "api_endpoint": "https://api.xpressbees.com",
        "tracking_url_template": "https://www.xpressbees.com/track/{tracking_number}",
        "tracking_pattern": r"^[0-9]{10,12}$",
    },
]


class Command(BaseCommand):
    help = "기본 택배사 설정을 생성/갱신한다 (이미 있으면 자격증명은 유지)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--deactivate-missing",
            action="store_true",
            help="기본 세트에 없는 택배사를 비활성화",
        )

    @transaction.atomic
    def handle(self, *args, **options):
        created, updated = 0, 0
        for row in REFERENCE_CARRIERS:
            data = dict(row)
            code = data.pop("code")
            _, was_created = Carrier.objects.update_or_create(
                code=code, defaults=dict(data, is_active=True)
            )
            if was_created:
                created += 1
            else:
                updated += 1

        if options["deactivate_missing"]:
            codes = [r["code"] for r in REFERENCE_CARRIERS]
            off = Carrier.objects.exclude(code__in=codes).update(is_active=False)
            self.stdout.write(f"deactivated: {off}")

        self.stdout.write(self.style.SUCCESS(f"carriers created={created} updated={updated}"))
