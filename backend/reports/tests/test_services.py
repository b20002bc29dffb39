from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from billing.models import Invoice
from billing.services import InvoiceBuilder, PaymentLedger
from insurance.models import InsuranceClaim
from reports.services import (
    approval_rate, claims_statistics, detailed_report, patient_billing_history, scope_claims_for,
    summary_report,
)


@pytest.mark.parametrize('approved,total,expected', [
    (7, 10, 70),
    (0, 0, 0),
    (2, 3, 67),
    (1, 8, 13),
    (10, 10, 100),
])
def test_approval_rate(approved, total, expected):
    assert approval_rate(approved, total) == expected


def build(patient, clerk, price):
    return InvoiceBuilder().build(patient, clerk, additional_items=[
        {'code': 'PROC1', 'description': 'Minor procedure', 'unit_price': price},
    ])


@pytest.mark.django_db
def test_summary_report(patient, other_patient, clerk):
    paid = build(patient, clerk, '100.00')
    PaymentLedger.record_payment(paid.pk, 'CASH', '100.00', clerk)
    partial = build(other_patient, clerk, '80.00')
    PaymentLedger.record_payment(partial.pk, 'CARD', '30.00', clerk)
    build(patient, clerk, '50.00')
    cancelled = build(patient, clerk, '999.00')
    PaymentLedger.cancel_invoice(cancelled.pk, clerk)

    today = timezone.localdate()
    report = summary_report(today, today)

    assert report['totals'] == {
        'invoices': 3,
        'billed': Decimal('230.00'),
        'paid': Decimal('130.00'),
        'outstanding': Decimal('100.00'),
    }
    statuses = {row['status']: row['count'] for row in report['by_status']}
    assert statuses == {'PAID': 1, 'PARTIAL': 1, 'SENT': 1, 'CANCELLED': 1}
    assert report['payment_breakdown'] == {'paid': 1, 'partial': 1, 'unpaid': 1, 'overdue': 0}
    assert report['revenue_by_type'] == [{'type': 'OTHER', 'count': 3, 'revenue': Decimal('230.00')}]


@pytest.mark.django_db
def test_summary_counts_overdue(patient, clerk):
    invoice = build(patient, clerk, '40.00')
    Invoice.objects.filter(pk=invoice.pk).update(due_date=timezone.localdate() - timedelta(days=1))

    today = timezone.localdate()
    assert summary_report(today, today)['payment_breakdown']['overdue'] == 1


@pytest.mark.django_db
def test_summary_report_outside_range_is_empty(patient, clerk):
    build(patient, clerk, '40.00')

    report = summary_report(date(2000, 1, 1), date(2000, 1, 31))

    assert report['totals']['invoices'] == 0
    assert report['totals']['billed'] == Decimal('0.00')
    assert report['by_status'] == []


@pytest.mark.django_db
def test_detailed_report_newest_first(patient, clerk):
    first = build(patient, clerk, '10.00')
    second = build(patient, clerk, '20.00')

    today = timezone.localdate()
    rows = detailed_report(today, today)

    assert [r['invoice_number'] for r in rows] == [second.invoice_number, first.invoice_number]
    assert rows[0]['patient'] == 'Jane Roe'
    assert rows[0]['is_overdue'] is False


@pytest.mark.django_db
def test_patient_billing_history(patient, other_patient, clerk):
    invoice = build(patient, clerk, '60.00')
    PaymentLedger.record_payment(invoice.pk, 'CASH', '25.00', clerk)
    build(other_patient, clerk, '10.00')

    history = patient_billing_history(patient)

    assert list(history['invoices']) == [Invoice.objects.get(pk=invoice.pk)]
    assert history['totals'] == {
        'invoices': 1, 'billed': Decimal('60.00'), 'paid': Decimal('25.00'), 'outstanding': Decimal('35.00'),
    }


@pytest.mark.django_db
def test_claim_scoping(make_claim, doctor, other_doctor, admin, receptionist, patient_user):
    mine = make_claim()
    theirs = make_claim(provider=admin)

    assert list(scope_claims_for(doctor)) == [mine]
    assert not scope_claims_for(other_doctor).exists()
    assert scope_claims_for(patient_user).count() == 2
    assert scope_claims_for(admin).count() == 2
    assert list(scope_claims_for(admin, provider_id=admin.pk)) == [theirs]
    assert not scope_claims_for(receptionist).exists()


@pytest.mark.django_db
def test_claims_statistics(make_claim, clerk):
    claims = [make_claim() for _ in range(10)]
    InsuranceClaim.objects.filter(pk__in=[c.pk for c in claims[:7]]).update(
        status='APPROVED', approved_amount=Decimal('120.00')
    )

    stats = claims_statistics(clerk)

    assert stats['total_claims'] == 10
    assert stats['approval_rate'] == 70
    assert {row['status']: row['count'] for row in stats['status_distribution']} == {'APPROVED': 7, 'DRAFT': 3}
    financial = stats['financial_summary']
    assert financial['total_claimed'] == Decimal('1500.00')
    assert financial['total_approved'] == Decimal('840.00')
    assert financial['total_paid'] == Decimal('0.00')
    assert financial['average_claim_amount'] == Decimal('150.00')
    assert financial['average_processing_days'] == Decimal('0.00')

    assert len(stats['monthly_trends']) == 1
    assert stats['monthly_trends'][0]['count'] == 10
    assert stats['top_diagnoses'] == [{
        'code': 'J06.9', 'description': 'Upper respiratory infection', 'count': 10, 'revenue': Decimal('1500.00'),
    }]
    assert stats['top_procedures'] == []


@pytest.mark.django_db
def test_claims_statistics_date_filter(make_claim, clerk):
    make_claim(service_date=date(2025, 1, 10))
    make_claim(service_date=date(2025, 6, 10))

    stats = claims_statistics(clerk, start_date=date(2025, 5, 1), end_date=date(2025, 12, 31))

    assert stats['total_claims'] == 1


@pytest.mark.django_db
def test_top_procedures_ranked_by_count(make_claim, clerk):
    office = {'cpt_code': '99213', 'description': 'Office visit', 'quantity': 1, 'unit_price': Decimal('100.00')}
    panel = {'cpt_code': '80061', 'description': 'Lipid panel', 'quantity': 1, 'unit_price': Decimal('45.00')}
    make_claim(total=None, procedures=[office, panel])
    make_claim(total=None, procedures=[office])

    top = claims_statistics(clerk)['top_procedures']

    assert [(row['code'], row['count'], row['revenue']) for row in top] == [
        ('99213', 2, Decimal('200.00')),
        ('80061', 1, Decimal('45.00')),
    ]
