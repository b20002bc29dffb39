import uuid
from datetime import date
from decimal import Decimal

import pytest
from django.utils import timezone

from billing.services import InvoiceBuilder
from core.exceptions import AccessDeniedError, StateConflictError, ValidationError
from insurance.models import ClaimPayment, ClaimStatusHistory, InsuranceClaim
from insurance.services import ClaimService, calculate_patient_responsibility


def move(claim, clerk, *statuses, **kwargs):
    for status in statuses:
        claim = ClaimService.update_status(claim.pk, status, clerk, **kwargs)
    return claim


@pytest.mark.django_db
def test_create_claim_numbers_and_responsibility(make_claim, doctor):
    claim = make_claim()
    second = make_claim()

    year = timezone.now().year
    assert claim.claim_number == f"CLM-{year}-000001"
    assert second.claim_number == f"CLM-{year}-000002"
    assert claim.status == 'DRAFT'
    assert claim.provider == doctor

    breakdown = claim.responsibility
    assert breakdown.coinsurance == Decimal('30.00')
    assert breakdown.copay == Decimal('10.00')
    assert breakdown.deductible == Decimal('20.00')
    assert breakdown.total == Decimal('60.00')


@pytest.mark.django_db
def test_total_defaults_to_procedure_sum(make_claim):
    claim = make_claim(total=None, procedures=[
        {'cpt_code': '99213', 'quantity': 1, 'unit_price': Decimal('80.00')},
        {'cpt_code': '85025', 'quantity': 2, 'unit_price': Decimal('35.00')},
    ])

    assert claim.total_claim_amount == Decimal('150.00')
    assert claim.procedures.count() == 2


@pytest.mark.django_db
def test_zero_total_is_rejected(make_claim):
    with pytest.raises(ValidationError):
        make_claim(total=None)
    assert InsuranceClaim.objects.count() == 0


@pytest.mark.django_db
def test_invalid_policy_is_rejected(patient, claim_invoice, doctor):
    with pytest.raises(ValidationError):
        ClaimService.create_claim(
            actor=doctor, patient=patient, policy_id=uuid.uuid4(), invoice_id=claim_invoice.pk,
            service_date=date(2025, 3, 14), total_claim_amount='100.00',
            diagnosis_codes=[{'icd10_code': 'J06.9'}],
        )


@pytest.mark.django_db
def test_invoice_of_another_patient_is_rejected(patient, other_patient, policy, clerk, doctor):
    foreign = InvoiceBuilder().build(other_patient, clerk, additional_items=[
        {'code': 'X', 'description': 'Item', 'unit_price': '10.00'},
    ])

    with pytest.raises(ValidationError):
        ClaimService.create_claim(
            actor=doctor, patient=patient, policy_id=policy.pk, invoice_id=foreign.pk,
            service_date=date(2025, 3, 14), total_claim_amount='100.00',
            diagnosis_codes=[{'icd10_code': 'J06.9'}],
        )


@pytest.mark.django_db
def test_provider_without_rate_uses_default(make_claim, provider):
    provider.reimbursement_rate = None
    provider.save()

    claim = make_claim(total='200.00')

    assert claim.responsibility.coinsurance == Decimal('40.00')


@pytest.mark.django_db
def test_responsibility_without_policy(make_claim, provider):
    claim = make_claim()

    breakdown = calculate_patient_responsibility(claim, provider)

    assert breakdown.total == Decimal('30.00')


@pytest.mark.django_db
def test_lifecycle_through_appeal(make_claim, doctor, clerk):
    claim = make_claim()
    claim = ClaimService.submit_claim(claim.pk, doctor)
    assert claim.submission_date is not None

    claim = move(claim, clerk, 'UNDER_REVIEW', 'DENIED', 'APPEAL_SUBMITTED', 'APPEAL_APPROVED')

    assert claim.status == 'APPEAL_APPROVED'
    assert claim.version == 5
    history = list(ClaimStatusHistory.objects.filter(claim=claim).order_by('created_at'))
    assert [h.new_status for h in history] == [
        'SUBMITTED', 'UNDER_REVIEW', 'DENIED', 'APPEAL_SUBMITTED', 'APPEAL_APPROVED',
    ]
    assert [h.previous_status for h in history[1:]] == [h.new_status for h in history[:-1]]
    stamps = [h.created_at for h in history]
    assert stamps == sorted(stamps)


@pytest.mark.django_db
def test_illegal_transition_leaves_claim_unchanged(make_claim, clerk):
    claim = make_claim()
    before = InsuranceClaim.objects.values().get(pk=claim.pk)

    with pytest.raises(StateConflictError):
        ClaimService.update_status(claim.pk, 'PAID', clerk, paid_amount=Decimal('10.00'))

    assert InsuranceClaim.objects.values().get(pk=claim.pk) == before
    assert not ClaimStatusHistory.objects.filter(claim=claim).exists()
    assert not ClaimPayment.objects.filter(claim=claim).exists()


@pytest.mark.django_db
def test_doctor_cannot_mark_paid(make_claim, doctor, clerk):
    claim = make_claim()
    ClaimService.submit_claim(claim.pk, doctor)
    move(claim, clerk, 'UNDER_REVIEW')
    ClaimService.update_status(claim.pk, 'APPROVED', clerk, approved_amount=Decimal('120.00'))

    with pytest.raises(AccessDeniedError):
        ClaimService.update_status(claim.pk, 'PAID', doctor)
    assert InsuranceClaim.objects.get(pk=claim.pk).status == 'APPROVED'


@pytest.mark.django_db
def test_approval_with_amount_posts_payment(make_claim, doctor, clerk):
    claim = make_claim(total='150.00')
    ClaimService.submit_claim(claim.pk, doctor)
    move(claim, clerk, 'UNDER_REVIEW')

    claim = ClaimService.update_status(
        claim.pk, 'APPROVED', clerk,
        insurance_response={'approved_amount': Decimal('120.00'), 'explanation_of_benefits': 'Covered at 80%'},
    )

    assert claim.status == 'APPROVED'
    assert claim.approved_amount == Decimal('120.00')
    assert claim.paid_amount == Decimal('120.00')
    assert claim.remaining_patient_responsibility == Decimal('30.00')
    assert ClaimPayment.objects.get(claim=claim).amount == Decimal('120.00')
    assert claim.insurance_response.explanation_of_benefits == 'Covered at 80%'

    claim = ClaimService.update_status(claim.pk, 'PAID', clerk)

    assert claim.status == 'PAID'
    assert claim.paid_amount == Decimal('120.00')
    assert ClaimPayment.objects.filter(claim=claim).count() == 1


@pytest.mark.django_db
def test_paid_posts_outstanding_approved_amount(make_claim, doctor, clerk):
    claim = make_claim()
    ClaimService.submit_claim(claim.pk, doctor)
    move(claim, clerk, 'UNDER_REVIEW')
    claim = ClaimService.update_status(claim.pk, 'APPROVED', clerk, approved_amount='120.00', paid_amount='0')
    assert claim.paid_amount == Decimal('0.00')
    assert not ClaimPayment.objects.filter(claim=claim).exists()

    claim = ClaimService.update_status(claim.pk, 'PAID', clerk, payment_reference='EFT-778')

    assert claim.status == 'PAID'
    assert claim.paid_amount == Decimal('120.00')
    assert claim.remaining_patient_responsibility == Decimal('30.00')
    payment = ClaimPayment.objects.get(claim=claim)
    assert payment.amount == Decimal('120.00')
    assert payment.reference == 'EFT-778'


@pytest.mark.django_db
def test_partial_approval_posts_payment(make_claim, doctor, clerk):
    claim = make_claim()
    ClaimService.submit_claim(claim.pk, doctor)
    move(claim, clerk, 'UNDER_REVIEW')

    claim = ClaimService.update_status(claim.pk, 'PARTIALLY_APPROVED', clerk, approved_amount='90.00')

    assert claim.paid_amount == Decimal('90.00')
    assert claim.remaining_patient_responsibility == Decimal('60.00')


@pytest.mark.django_db
def test_approval_without_amount_posts_nothing(make_claim, doctor, clerk):
    claim = make_claim()
    ClaimService.submit_claim(claim.pk, doctor)
    move(claim, clerk, 'UNDER_REVIEW')

    claim = ClaimService.update_status(claim.pk, 'APPROVED', clerk)

    assert claim.paid_amount == Decimal('0.00')
    assert not ClaimPayment.objects.filter(claim=claim).exists()


@pytest.mark.django_db
def test_non_numeric_amount_is_rejected(make_claim, doctor, clerk):
    claim = make_claim()
    ClaimService.submit_claim(claim.pk, doctor)
    move(claim, clerk, 'UNDER_REVIEW')

    with pytest.raises(ValidationError):
        ClaimService.update_status(claim.pk, 'APPROVED', clerk, approved_amount='NaN')
    assert InsuranceClaim.objects.get(pk=claim.pk).status == 'UNDER_REVIEW'


@pytest.mark.django_db
def test_payment_cannot_exceed_total(make_claim, doctor, clerk):
    claim = make_claim()
    ClaimService.submit_claim(claim.pk, doctor)
    move(claim, clerk, 'UNDER_REVIEW')

    with pytest.raises(StateConflictError):
        ClaimService.update_status(claim.pk, 'APPROVED', clerk, approved_amount='150.00', paid_amount='150.01')
    assert InsuranceClaim.objects.get(pk=claim.pk).status == 'UNDER_REVIEW'


@pytest.mark.django_db
def test_approved_cannot_exceed_total(make_claim, doctor, clerk):
    claim = make_claim()
    ClaimService.submit_claim(claim.pk, doctor)
    move(claim, clerk, 'UNDER_REVIEW')

    with pytest.raises(ValidationError):
        ClaimService.update_status(claim.pk, 'APPROVED', clerk, approved_amount='200.00')


@pytest.mark.django_db
def test_paid_claim_is_frozen(make_claim, doctor, clerk):
    claim = make_claim()
    ClaimService.submit_claim(claim.pk, doctor)
    move(claim, clerk, 'UNDER_REVIEW')
    ClaimService.update_status(claim.pk, 'APPROVED', clerk, approved_amount='150.00')
    ClaimService.update_status(claim.pk, 'PAID', clerk)

    with pytest.raises(StateConflictError, match='paid or closed'):
        ClaimService.update_claim(claim.pk, doctor, {'notes': 'late edit'})
    with pytest.raises(StateConflictError):
        ClaimService.update_status(claim.pk, 'CLOSED', clerk)


@pytest.mark.django_db
def test_other_doctor_cannot_edit(make_claim, other_doctor):
    claim = make_claim()

    with pytest.raises(AccessDeniedError):
        ClaimService.update_claim(claim.pk, other_doctor, {'notes': 'not mine'})


@pytest.mark.django_db
def test_total_edit_recomputes_responsibility(make_claim, doctor):
    claim = make_claim()

    claim = ClaimService.update_claim(claim.pk, doctor, {
        'total_claim_amount': Decimal('200.00'),
        'diagnosis_codes': [{'icd10_code': 'E11.9', 'description': 'Type 2 diabetes'}],
    })

    claim = InsuranceClaim.objects.get(pk=claim.pk)
    assert claim.version == 1
    assert claim.responsibility.coinsurance == Decimal('40.00')
    assert claim.responsibility.total == Decimal('70.00')
    assert list(claim.diagnoses.values_list('icd10_code', flat=True)) == ['E11.9']


@pytest.mark.django_db
def test_procedure_edit_recomputes_total(make_claim, doctor):
    claim = make_claim()

    ClaimService.update_claim(claim.pk, doctor, {'procedure_codes': [
        {'cpt_code': '99214', 'quantity': 1, 'unit_price': Decimal('100.00')},
        {'cpt_code': '85025', 'quantity': 2, 'unit_price': Decimal('50.00')},
    ]})

    claim = InsuranceClaim.objects.get(pk=claim.pk)
    assert claim.total_claim_amount == Decimal('200.00')
    assert claim.procedures.count() == 2
    assert claim.responsibility.coinsurance == Decimal('40.00')
    assert claim.responsibility.total == Decimal('70.00')


@pytest.mark.django_db
def test_cancel_only_from_draft(make_claim, doctor):
    draft = make_claim()
    submitted = make_claim()
    ClaimService.submit_claim(submitted.pk, doctor)

    assert ClaimService.cancel_claim(draft.pk, doctor).status == 'CANCELLED'
    with pytest.raises(StateConflictError):
        ClaimService.cancel_claim(submitted.pk, doctor)
    with pytest.raises(StateConflictError):
        ClaimService.submit_claim(submitted.pk, doctor)
