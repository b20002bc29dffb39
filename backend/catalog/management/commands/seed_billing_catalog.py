from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from catalog.models import ServiceCatalogEntry
from insurance.models import InsuranceProvider

SERVICES = [
    {'service_code': '99213', 'name': 'Medical Consultation', 'department': 'CONSULTATION', 'price': '50.00'},
    {'service_code': '99214', 'name': 'Extended Consultation', 'department': 'CONSULTATION', 'price': '85.00'},
    {'service_code': '85025', 'name': 'Complete Blood Count', 'department': 'LABORATORY', 'price': '35.00'},
    {'service_code': '80061', 'name': 'Lipid Profile', 'department': 'LABORATORY', 'price': '45.00'},
    {'service_code': '82947', 'name': 'Blood Glucose', 'department': 'LABORATORY', 'price': '15.00'},
    {'service_code': '81001', 'name': 'Urinalysis', 'department': 'LABORATORY', 'price': '20.00'},
    {'service_code': '71046', 'name': 'Chest X-Ray', 'department': 'RADIOLOGY', 'price': '120.00'},
    {'service_code': 'RX-AMOX500', 'name': 'Amoxicillin', 'department': 'PHARMACY', 'price': '12.50'},
    {'service_code': 'RX-PARA500', 'name': 'Paracetamol', 'department': 'PHARMACY', 'price': '4.00'},
    {'service_code': 'RX-METF500', 'name': 'Metformin', 'department': 'PHARMACY', 'price': '8.75'},
]

PROVIDERS = [
    {'code': 'BCBS', 'name': 'Blue Cross Blue Shield', 'reimbursement_rate': '80'},
    {'code': 'AETNA', 'name': 'Aetna', 'reimbursement_rate': '75'},
    {'code': 'MEDICARE', 'name': 'Medicare', 'reimbursement_rate': '80'},
    {'code': 'SELFPAY', 'name': 'Self Pay Discount Plan', 'reimbursement_rate': None},
]


class Command(BaseCommand):
    help = 'Loads the default service catalog and insurance providers (safe to run repeatedly)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--update-prices', action='store_true',
            help='Overwrite prices of entries that already exist',
        )

    def handle(self, *args, **options):
        update_prices = options['update_prices']
        with transaction.atomic():
            created = updated = 0
            for data in SERVICES:
                entry, was_created = ServiceCatalogEntry.objects.get_or_create(
                    service_code=data['service_code'],
                    defaults={'name': data['name'], 'department': data['department'], 'price': Decimal(data['price'])},
                )
                if was_created:
                    created += 1
                elif update_prices and entry.price != Decimal(data['price']):
                    entry.price = Decimal(data['price'])
                    entry.save(update_fields=['price', 'updated_at'])
                    updated += 1
            self.stdout.write(f'Catalog: {created} created, {updated} updated')

            providers = 0
            for data in PROVIDERS:
                rate = data['reimbursement_rate']
                _, was_created = InsuranceProvider.objects.get_or_create(
                    code=data['code'],
                    defaults={'name': data['name'], 'reimbursement_rate': Decimal(rate) if rate else None},
                )
                providers += was_created
            self.stdout.write(f'Insurance providers: {providers} created')

        self.stdout.write(self.style.SUCCESS('Billing catalog seeded.'))
