from datetime import date
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from billing.services import InvoiceBuilder
from catalog.models import ServiceCatalogEntry
from insurance.models import InsuranceProvider, PatientInsurance
from insurance.services import ClaimService
from lab.models import LabOrder, LabOrderItem, LabTest
from patients.models import Patient, Visit
from pharmacy.models import Prescription, PrescriptionMedication

User = get_user_model()


@pytest.fixture
def make_user(db):
    def _make(username, role):
        return User.objects.create_user(username=username, password='not-a-real-pass', role=role)
    return _make


@pytest.fixture
def admin(make_user):
    return make_user('admin1', 'ADMIN')


@pytest.fixture
def clerk(make_user):
    return make_user('billing1', 'BILLING_STAFF')


@pytest.fixture
def doctor(make_user):
    return make_user('doctor1', 'DOCTOR')


@pytest.fixture
def other_doctor(make_user):
    return make_user('doctor2', 'DOCTOR')


@pytest.fixture
def receptionist(make_user):
    return make_user('reception1', 'RECEPTION')


@pytest.fixture
def patient_user(make_user):
    return make_user('patient1', 'PATIENT')


@pytest.fixture
def patient(patient_user):
    return Patient.objects.create(user=patient_user, full_name='Jane Roe', phone='5550001', email='jane@example.com')


@pytest.fixture
def other_patient(make_user):
    return Patient.objects.create(user=make_user('patient2', 'PATIENT'), full_name='John Doe', phone='5550002')


@pytest.fixture
def visit(patient, doctor):
    return Visit.objects.create(patient=patient, doctor=doctor)


@pytest.fixture
def provider(db):
    return InsuranceProvider.objects.create(name='Blue Cross', code='BCBS', reimbursement_rate=Decimal('80'))


@pytest.fixture
def policy(patient, provider):
    return PatientInsurance.objects.create(
        patient=patient,
        provider=provider,
        policy_number='POL-1001',
        subscriber_name='Jane Roe',
        effective_date=date(2024, 1, 1),
        copay_amount=Decimal('10.00'),
        deductible_amount=Decimal('20.00'),
    )


@pytest.fixture
def catalog_entries(db):
    rows = [
        ('99213', 'Medical Consultation', 'CONSULTATION', '50.00'),
        ('85025', 'Complete Blood Count', 'LABORATORY', '35.00'),
        ('RX-AMOX500', 'Amoxicillin', 'PHARMACY', '12.50'),
    ]
    return [
        ServiceCatalogEntry.objects.create(service_code=code, name=name, department=dept, price=Decimal(price))
        for code, name, dept, price in rows
    ]


@pytest.fixture
def lab_order(patient, visit, doctor):
    order = LabOrder.objects.create(patient=patient, visit=visit, ordered_by=doctor)
    for name, code, price in [
        ('Complete Blood Count', 'CBC', '0'),
        ('Thyroid Panel', 'TSH', '40.00'),
        ('Lipid Profile', '', '0'),
    ]:
        test = LabTest.objects.create(name=name, code=code, price=Decimal(price))
        LabOrderItem.objects.create(order=order, test=test)
    return order


@pytest.fixture
def prescription(patient, visit, doctor):
    rx = Prescription.objects.create(patient=patient, visit=visit, prescribed_by=doctor)
    PrescriptionMedication.objects.create(prescription=rx, name='amoxicillin', dosage='500mg', quantity='10 tablets')
    PrescriptionMedication.objects.create(prescription=rx, name='Unlisted Syrup', dosage='', quantity='two bottles')
    return rx


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def client_for():
    def _client(user):
        client = APIClient()
        client.force_authenticate(user=user)
        return client
    return _client


@pytest.fixture
def claim_invoice(patient, clerk):
    return InvoiceBuilder().build(patient, clerk, additional_items=[
        {'code': '99213', 'description': 'Office visit', 'unit_price': '150.00'},
    ])


@pytest.fixture
def make_claim(patient, policy, claim_invoice, doctor):
    def _make(total='150.00', provider=None, service_date=date(2025, 3, 14), diagnoses=None, procedures=None):
        return ClaimService.create_claim(
            actor=provider or doctor,
            patient=patient,
            policy_id=policy.pk,
            invoice_id=claim_invoice.pk,
            service_date=service_date,
            total_claim_amount=total,
            diagnosis_codes=diagnoses or [{'icd10_code': 'J06.9', 'description': 'Upper respiratory infection', 'is_primary': True}],
            procedure_codes=procedures or [],
        )
    return _make
