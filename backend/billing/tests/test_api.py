from decimal import Decimal

import pytest

from billing.models import Invoice
from billing.services import InvoiceBuilder
from insurance.models import PatientInsurance

INVOICES = '/api/billing/invoices/'


def build_invoice(patient, user, price='100.00'):
    return InvoiceBuilder().build(patient, user, additional_items=[
        {'code': 'PROC1', 'description': 'Minor procedure', 'unit_price': price},
    ])


@pytest.mark.django_db
def test_clerk_creates_invoice(client_for, clerk, patient):
    response = client_for(clerk).post(INVOICES, {
        'patient_id': str(patient.pk),
        'consultation_fee': '40.00',
        'additional_items': [{'code': 'DRS', 'description': 'Dressing', 'unit_price': '5.00', 'quantity': 2}],
    }, format='json')

    assert response.status_code == 201
    assert response.data['status'] == 'SENT'
    assert Decimal(response.data['total_amount']) == Decimal('50.00')
    assert len(response.data['items']) == 2
    assert response.data['insurance'] is None
    assert response.data['patient']['full_name'] == 'Jane Roe'


@pytest.mark.django_db
def test_invalid_item_is_a_400(client_for, clerk, patient):
    response = client_for(clerk).post(INVOICES, {
        'patient_id': str(patient.pk),
        'additional_items': [{'code': 'X', 'description': 'Bad', 'unit_price': '-1'}],
    }, format='json')

    assert response.status_code == 400
    assert 'error' in response.data


@pytest.mark.django_db
@pytest.mark.parametrize('item', [
    {'code': {'cpt': '99213'}, 'description': 'Office visit', 'unit_price': '80.00'},
    {'code': '99213', 'description': 'Office visit', 'unit_price': '80.00', 'type': ['PROCEDURE']},
    {'code': '99213', 'description': 'Office visit', 'unit_price': '80.00', 'discount_percent': 'ten'},
    {'code': '99213', 'description': 'Office visit', 'unit_price': '80.00', 'quantity': 0},
    {'code': '99213', 'description': 'Office visit', 'unit_price': 'NaN'},
    'not-an-object',
])
def test_malformed_item_is_a_400(client_for, clerk, patient, item):
    response = client_for(clerk).post(INVOICES, {
        'patient_id': str(patient.pk),
        'procedures': [item],
    }, format='json')

    assert response.status_code == 400
    assert not Invoice.objects.exists()


@pytest.mark.django_db
def test_numeric_code_is_stored_as_text(client_for, clerk, patient):
    response = client_for(clerk).post(INVOICES, {
        'patient_id': str(patient.pk),
        'procedures': [{'code': 99213, 'description': 'Office visit', 'unit_price': '80.00'}],
    }, format='json')

    assert response.status_code == 201
    assert response.data['items'][0]['service_code'] == '99213'


@pytest.mark.django_db
def test_doctor_cannot_create_invoice(client_for, doctor, patient):
    response = client_for(doctor).post(INVOICES, {'patient_id': str(patient.pk)}, format='json')

    assert response.status_code == 403


@pytest.mark.django_db
def test_anonymous_is_rejected(api_client):
    assert api_client.get(INVOICES).status_code == 401


@pytest.mark.django_db
def test_patient_lists_only_own_invoices(client_for, clerk, patient, other_patient, patient_user):
    mine = build_invoice(patient, clerk)
    build_invoice(other_patient, clerk)

    response = client_for(patient_user).get(INVOICES)

    assert response.status_code == 200
    assert [row['id'] for row in response.data['results']] == [str(mine.pk)]


@pytest.mark.django_db
def test_patient_cannot_read_other_patients_invoice(client_for, clerk, other_patient, patient_user):
    invoice = build_invoice(other_patient, clerk)

    response = client_for(patient_user).get(f'{INVOICES}{invoice.pk}/')

    assert response.status_code == 403


@pytest.mark.django_db
def test_payment_endpoint_settles_invoice(client_for, clerk, patient):
    invoice = build_invoice(patient, clerk)
    client = client_for(clerk)

    response = client.post(f'{INVOICES}{invoice.pk}/payments/', {'method': 'CASH', 'amount': '100.00'}, format='json')

    assert response.status_code == 200
    assert response.data['status'] == 'PAID'
    assert response.data['balance'] == Decimal('0.00')
    assert response.data['payment']['processed_by'] == clerk.username


@pytest.mark.django_db
def test_overpayment_is_a_400(client_for, clerk, patient):
    invoice = build_invoice(patient, clerk)

    response = client_for(clerk).post(
        f'{INVOICES}{invoice.pk}/payments/', {'method': 'CASH', 'amount': '150.00'}, format='json'
    )

    assert response.status_code == 400
    assert 'error' in response.data


@pytest.mark.django_db
def test_patient_cannot_record_payment(client_for, clerk, patient, patient_user):
    invoice = build_invoice(patient, clerk)

    response = client_for(patient_user).post(
        f'{INVOICES}{invoice.pk}/payments/', {'method': 'CASH', 'amount': '10.00'}, format='json'
    )

    assert response.status_code == 403


@pytest.mark.django_db
def test_summary_report(client_for, clerk, patient):
    build_invoice(patient, clerk)

    response = client_for(clerk).get('/api/billing/reports/billing/', {'report_type': 'summary'})

    assert response.status_code == 200
    assert response.data['totals']['invoices'] == 1


@pytest.mark.django_db
def test_detailed_report_csv_export(client_for, clerk, patient):
    invoice = build_invoice(patient, clerk)

    response = client_for(clerk).get(
        '/api/billing/reports/billing/', {'report_type': 'detailed', 'export': 'csv'}
    )

    assert response.status_code == 200
    assert response['Content-Type'] == 'text/csv'
    assert 'attachment' in response['Content-Disposition']
    assert invoice.invoice_number in response.content.decode()


@pytest.mark.django_db
def test_report_rejects_bad_date(client_for, clerk):
    response = client_for(clerk).get('/api/billing/reports/billing/', {'start_date': 'yesterday'})

    assert response.status_code == 400


@pytest.mark.django_db
def test_patient_sees_own_billing_history(client_for, clerk, patient, patient_user):
    build_invoice(patient, clerk)

    response = client_for(patient_user).get(f'/api/billing/patients/{patient.pk}/billing-history/')

    assert response.status_code == 200
    assert response.data['totals']['invoices'] == 1
    assert len(response.data['invoices']) == 1


@pytest.mark.django_db
def test_patient_cannot_see_other_billing_history(client_for, other_patient, patient_user):
    response = client_for(patient_user).get(f'/api/billing/patients/{other_patient.pk}/billing-history/')

    assert response.status_code == 403


@pytest.mark.django_db
def test_new_primary_policy_demotes_previous(client_for, clerk, patient, policy, provider):
    response = client_for(clerk).post(f'/api/billing/patients/{patient.pk}/insurance/', {
        'provider_id': str(provider.pk),
        'policy_number': 'POL-2002',
        'subscriber_name': 'Jane Roe',
        'effective_date': '2025-01-01',
    }, format='json')

    assert response.status_code == 201
    policy.refresh_from_db()
    assert not policy.is_primary
    primary = PatientInsurance.objects.get(patient=patient, is_primary=True, is_active=True)
    assert primary.policy_number == 'POL-2002'


@pytest.mark.django_db
def test_clerk_cannot_create_provider(client_for, clerk):
    response = client_for(clerk).post('/api/billing/insurance/providers/', {'name': 'Acme', 'code': 'ACME'})

    assert response.status_code == 403
