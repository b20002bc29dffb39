import logging

from django.db import transaction
from django.utils import timezone

from billing.models import Invoice
from core.conf import medbill_setting
from core.exceptions import AccessDeniedError, NotFoundError, StateConflictError, ValidationError
from core.models import Sequence
from core.money import ZERO, money, percent_of, to_decimal
from core.permissions import ADMIN, DOCTOR, PATIENT, has_capability, role_of
from medbill.sio import emit_on_commit
from . import state_machine as sm
from .models import (
    ClaimDiagnosis, ClaimInsuranceResponse, ClaimPatientResponsibility, ClaimPayment,
    ClaimProcedure, ClaimStatusHistory, InsuranceClaim, PatientInsurance,
)

logger = logging.getLogger(__name__)

RESPONSE_FIELDS = ('explanation_of_benefits', 'denial_reason', 'adjustment_reason', 'reimbursement_rate')


def next_claim_number(year=None):
    year = year or timezone.now().year
    return f"CLM-{year}-{Sequence.next_value('claim', year):06d}"


def reimbursement_rate_for(provider):
    rate = getattr(provider, 'reimbursement_rate', None)
    if rate is None:
        rate = to_decimal(medbill_setting('DEFAULT_REIMBURSEMENT_RATE'))
    return rate


def calculate_patient_responsibility(claim, provider, policy=None):
    """
    coinsurance = total - total * rate / 100, copay and deductible from the
    policy. Stores the breakdown on the claim and returns it.
    """
    rate = reimbursement_rate_for(provider)
    total = money(claim.total_claim_amount)
    coinsurance = money(total - percent_of(total, rate))
    copay = money(policy.copay_amount) if policy is not None else ZERO
    deductible = money(policy.deductible_amount) if policy is not None else ZERO
    breakdown, _ = ClaimPatientResponsibility.objects.update_or_create(
        claim=claim,
        defaults={'copay': copay, 'deductible': deductible, 'coinsurance': coinsurance},
    )
    return breakdown


def _money_field(value, field):
    amount = to_decimal(value)
    if amount is None or not amount.is_finite() or amount < 0:
        raise ValidationError({field: "A non-negative amount is required."})
    if amount != money(amount):
        raise ValidationError({field: "At most two decimal places are allowed."})
    return amount


def _build_procedures(claim, procedure_codes):
    rows = []
    for i, data in enumerate(procedure_codes):
        code = (data.get('cpt_code') or '').strip()
        if not code:
            raise ValidationError({f"procedure_codes[{i}]": "cpt_code is required."})
        quantity = int(data.get('quantity') or 1)
        if quantity < 1:
            raise ValidationError({f"procedure_codes[{i}]": "Quantity must be at least 1."})
        unit_price = _money_field(data.get('unit_price'), f"procedure_codes[{i}].unit_price")
        rows.append(ClaimProcedure(
            claim=claim, cpt_code=code, description=data.get('description') or '',
            quantity=quantity, unit_price=unit_price, total_amount=money(quantity * unit_price),
        ))
    return rows


def _build_diagnoses(claim, diagnosis_codes):
    rows = []
    for i, data in enumerate(diagnosis_codes):
        code = (data.get('icd10_code') or '').strip()
        if not code:
            raise ValidationError({f"diagnosis_codes[{i}]": "icd10_code is required."})
        rows.append(ClaimDiagnosis(
            claim=claim, icd10_code=code, description=data.get('description') or '',
            is_primary=bool(data.get('is_primary')),
        ))
    return rows


def ensure_can_view(claim, user):
    role = role_of(user)
    if role == PATIENT and getattr(claim.patient, 'user_id', None) != user.pk:
        raise AccessDeniedError("Access denied")
    if role == DOCTOR and claim.provider_id != user.pk:
        raise AccessDeniedError("Access denied")


def ensure_can_modify(claim, user):
    role = role_of(user)
    if role == ADMIN:
        return
    if role == DOCTOR and claim.provider_id == user.pk:
        return
    raise AccessDeniedError("Access denied")


class ClaimService:

    @staticmethod
    def _lock(claim_id):
        try:
            return (
                InsuranceClaim.objects.select_for_update()
                .select_related('patient', 'policy__provider')
                .get(pk=claim_id, is_deleted=False)
            )
        except InsuranceClaim.DoesNotExist:
            raise NotFoundError("Insurance claim not found")

    @staticmethod
    def _apply_status(claim, new_status, reason, actor, notes=''):
        ClaimStatusHistory.objects.create(
            claim=claim,
            previous_status=claim.status,
            new_status=new_status,
            reason=reason or '',
            updated_by=actor,
            notes=notes or '',
        )
        previous = claim.status
        claim.status = new_status
        claim.last_updated_by = actor
        if new_status == sm.SUBMITTED and claim.submission_date is None:
            claim.submission_date = timezone.now()
        claim.version += 1
        claim.save()
        logger.info("Claim %s: %s -> %s by %s", claim.claim_number, previous, new_status, actor.pk)
        emit_on_commit('claim_update', {
            'claim_number': claim.claim_number,
            'status': new_status,
            'previous_status': previous,
        })

    @classmethod
    def create_claim(cls, actor, patient, policy_id, invoice_id, service_date, total_claim_amount=None,
                     diagnosis_codes=(), procedure_codes=(), prior_authorization=None, notes='', provider=None):
        policy = (
            PatientInsurance.objects.select_related('provider')
            .filter(pk=policy_id, patient=patient, is_active=True, is_deleted=False)
            .first()
        )
        if policy is None:
            raise ValidationError("Invalid or inactive patient insurance")
        invoice = Invoice.objects.filter(pk=invoice_id, patient=patient, is_deleted=False).first()
        if invoice is None:
            raise ValidationError("Invoice not found for this patient")
        if role_of(actor) == DOCTOR or provider is None:
            provider = actor

        prior_authorization = prior_authorization or {}
        with transaction.atomic():
            claim = InsuranceClaim(
                claim_number=next_claim_number(),
                patient=patient,
                policy=policy,
                invoice=invoice,
                provider=provider,
                service_date=service_date,
                total_claim_amount=ZERO,
                notes=notes or '',
                submitted_by=actor,
                last_updated_by=actor,
                prior_auth_required=bool(prior_authorization.get('is_required')),
                prior_auth_number=prior_authorization.get('authorization_number') or '',
                prior_auth_date=prior_authorization.get('authorization_date'),
                prior_auth_expiration=prior_authorization.get('expiration_date'),
                prior_auth_status=prior_authorization.get('status') or '',
            )
            procedures = _build_procedures(claim, procedure_codes)
            diagnoses = _build_diagnoses(claim, diagnosis_codes)
            if total_claim_amount in (None, ''):
                total = money(sum((p.total_amount for p in procedures), ZERO))
            else:
                total = _money_field(total_claim_amount, 'total_claim_amount')
            if total <= 0:
                raise ValidationError({'total_claim_amount': "Must be greater than zero."})
            claim.total_claim_amount = total
            claim.save()
            ClaimProcedure.objects.bulk_create(procedures)
            ClaimDiagnosis.objects.bulk_create(diagnoses)
            calculate_patient_responsibility(claim, policy.provider, policy)

        logger.info("Claim %s created for invoice %s (%s)", claim.claim_number, invoice.invoice_number, total)
        return claim

    @classmethod
    def update_claim(cls, claim_id, actor, data):
        with transaction.atomic():
            claim = cls._lock(claim_id)
            ensure_can_modify(claim, actor)
            if claim.status in sm.FROZEN_FOR_EDITS:
                raise StateConflictError("Cannot update a paid or closed claim")
            if claim.status in sm.TERMINAL:
                raise StateConflictError(f"Claim {claim.claim_number} is {claim.status} and cannot be edited.")

            if data.get('diagnosis_codes') is not None:
                rows = _build_diagnoses(claim, data['diagnosis_codes'])
                claim.diagnoses.all().delete()
                ClaimDiagnosis.objects.bulk_create(rows)
            total = None
            if data.get('procedure_codes') is not None:
                rows = _build_procedures(claim, data['procedure_codes'])
                claim.procedures.all().delete()
                ClaimProcedure.objects.bulk_create(rows)
                if rows:
                    total = money(sum((p.total_amount for p in rows), ZERO))
            if data.get('total_claim_amount') not in (None, ''):
                total = _money_field(data['total_claim_amount'], 'total_claim_amount')
            if total is not None and total != claim.total_claim_amount:
                if total <= 0 or total < claim.paid_amount:
                    raise ValidationError({'total_claim_amount': "Must be positive and cover the amount already paid."})
                claim.total_claim_amount = total
                calculate_patient_responsibility(claim, claim.policy.provider, claim.policy)
            prior = data.get('prior_authorization')
            if prior:
                claim.prior_auth_required = bool(prior.get('is_required', claim.prior_auth_required))
                claim.prior_auth_number = prior.get('authorization_number', claim.prior_auth_number) or ''
                claim.prior_auth_date = prior.get('authorization_date', claim.prior_auth_date)
                claim.prior_auth_expiration = prior.get('expiration_date', claim.prior_auth_expiration)
                claim.prior_auth_status = prior.get('status', claim.prior_auth_status) or ''
            if data.get('notes'):
                claim.notes = data['notes']

            claim.last_updated_by = actor
            claim.version += 1
            claim.save()
        return claim

    @classmethod
    def submit_claim(cls, claim_id, actor):
        with transaction.atomic():
            claim = cls._lock(claim_id)
            ensure_can_modify(claim, actor)
            if claim.status != sm.DRAFT:
                raise StateConflictError("Only draft claims can be submitted")
            cls._apply_status(claim, sm.SUBMITTED, 'Claim submitted to insurance', actor)
        return claim

    @classmethod
    def cancel_claim(cls, claim_id, actor):
        with transaction.atomic():
            claim = cls._lock(claim_id)
            ensure_can_modify(claim, actor)
            if claim.status != sm.DRAFT:
                raise StateConflictError("Only draft claims can be cancelled")
            cls._apply_status(claim, sm.CANCELLED, 'Claim cancelled by user', actor)
        return claim

    @classmethod
    def update_status(cls, claim_id, new_status, actor, reason='', notes='', approved_amount=None,
                      paid_amount=None, insurance_response=None, payment_reference=''):
        """
        Move a claim to ``new_status`` and record the insurer's answer.

        A remittance (``paid_amount``) is posted to the claim's payment trail.
        Without one, an approval carrying ``approved_amount`` or a move to PAID
        posts the approved amount not yet paid.
        """
        if new_status == sm.PAID and not has_capability(actor, 'claim.pay'):
            raise AccessDeniedError("Only admin or billing staff can mark a claim as paid")

        insurance_response = dict(insurance_response or {})
        if approved_amount in (None, ''):
            approved_amount = insurance_response.pop('approved_amount', None)
        if paid_amount in (None, ''):
            paid_amount = insurance_response.pop('paid_amount', None)

        with transaction.atomic():
            claim = cls._lock(claim_id)
            sm.check_transition(claim.status, new_status, claim.claim_number)

            if approved_amount not in (None, ''):
                approved = _money_field(approved_amount, 'approved_amount')
                if approved > claim.total_claim_amount:
                    raise ValidationError({'approved_amount': "Cannot exceed the total claim amount."})
                claim.approved_amount = approved

            payment = None
            if paid_amount not in (None, ''):
                payment = _money_field(paid_amount, 'paid_amount')
            elif new_status == sm.PAID or (new_status in sm.DECISION_STATES and approved_amount not in (None, '')):
                # A fully paid approval posts nothing.
                payment = max(ZERO, money(claim.approved_amount - claim.paid_amount))

            if payment:
                if new_status not in sm.PAYABLE_STATES:
                    raise ValidationError({'paid_amount': f"Payments cannot be posted on a {new_status} claim."})
                if claim.paid_amount + payment > claim.total_claim_amount:
                    raise StateConflictError(
                        f"Payment would exceed the total claim amount on {claim.claim_number}."
                    )
                ClaimPayment.objects.create(
                    claim=claim, amount=payment, reference=payment_reference or '', posted_by=actor
                )
                claim.paid_amount = money(claim.paid_amount + payment)

            if insurance_response:
                cls._merge_response(claim, insurance_response)

            cls._apply_status(claim, new_status, reason, actor, notes)
        return claim

    @staticmethod
    def _merge_response(claim, data):
        response = ClaimInsuranceResponse.objects.filter(claim=claim).first()
        if response is None:
            response = ClaimInsuranceResponse(claim=claim)
        for field in RESPONSE_FIELDS:
            if field in data and data[field] is not None:
                value = data[field]
                if field == 'reimbursement_rate':
                    value = to_decimal(value)
                    if value is None or value < 0 or value > 100:
                        raise ValidationError({'reimbursement_rate': "Invalid percentage."})
                setattr(response, field, value)
        response.response_date = timezone.now()
        response.save()
        return response


def add_patient_policy(patient, provider, **fields):
    """Create a policy; a new active primary policy demotes the current one."""
    with transaction.atomic():
        if fields.get('is_primary', True) and fields.get('is_active', True):
            demoted = (
                PatientInsurance.objects.select_for_update()
                .filter(patient=patient, is_primary=True, is_active=True)
                .update(is_primary=False)
            )
            if demoted:
                logger.info("Demoted %d primary policy for patient %s", demoted, patient.pk)
        return PatientInsurance.objects.create(patient=patient, provider=provider, **fields)
