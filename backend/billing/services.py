"""
Invoice construction and payment application.

Every write that touches an invoice's money fields happens inside
``transaction.atomic()`` on a row locked with ``select_for_update()``, and
all derived fields (balance, status, paid_at) are recomputed in that same
write.
"""
import logging
import re
from datetime import timedelta

from django.db import transaction
from django.utils import timezone

from catalog.lookup import fallback_price, get_catalog, resolve_price
from core.conf import medbill_setting
from core.exceptions import NotFoundError, OverpaymentError, StateConflictError, ValidationError
from core.models import Sequence
from core.money import ZERO, HUNDRED, money, percent_of, to_decimal
from insurance.models import PatientInsurance
from lab.models import LabOrder
from medbill.sio import emit_on_commit
from pharmacy.models import Prescription
from .models import Invoice, InvoiceInsurance, InvoiceItem, Payment

logger = logging.getLogger(__name__)

CONSULTATION_CODE = '99213'
LAB_CODE = 'LAB001'
PHARMACY_CODE = 'PHARM001'

_LEADING_INT = re.compile(r'^\s*(\d+)')


def next_invoice_number(year=None):
    year = year or timezone.now().year
    return f"INV{year}{Sequence.next_value('invoice', year):06d}"


def parse_quantity(raw):
    """Leading integer of a free-text quantity; 1 when absent or unusable."""
    if isinstance(raw, int):
        return raw if raw >= 1 else 1
    match = _LEADING_INT.match(str(raw or ''))
    if not match:
        return 1
    qty = int(match.group(1))
    return qty if qty >= 1 else 1


def _require_money(value, field, allow_zero=False):
    amount = to_decimal(value)
    if amount is None or not amount.is_finite():
        raise ValidationError({field: "A valid amount is required."})
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError({field: "Must be greater than zero."})
    if amount != money(amount):
        raise ValidationError({field: "At most two decimal places are allowed."})
    return amount


def _require_percent(value, field, maximum=None):
    if value is None or value == '':
        return ZERO
    pct = to_decimal(value)
    if pct is None or not pct.is_finite() or pct < 0 or (maximum is not None and pct > maximum):
        raise ValidationError({field: "Invalid percentage."})
    return pct


class InvoiceBuilder:
    """
    Assembles line items from consultation, lab, pharmacy, procedure and
    free-form sources into one invoice.

    Lab orders and prescriptions that cannot be resolved for the patient are
    skipped with a warning; explicit items are validated strictly before
    anything is written.
    """

    def __init__(self, catalog=None):
        self.catalog = catalog or get_catalog()

    def build(self, patient, created_by, visit=None, appointment_id=None, consultation_fee=None,
              lab_orders=(), prescriptions=(), procedures=(), additional_items=(), draft=False, notes=''):
        items = []
        if consultation_fee not in (None, '', False):
            items.append(self.consultation_item(consultation_fee))
        for order_id in lab_orders:
            items.extend(self.lab_items(patient, order_id))
        for prescription_id in prescriptions:
            items.extend(self.pharmacy_items(patient, prescription_id))
        for i, data in enumerate(procedures):
            items.append(self.explicit_item(data, default_type='PROCEDURE', field=f"procedures[{i}]"))
        for i, data in enumerate(additional_items):
            items.append(self.explicit_item(data, default_type='OTHER', field=f"additional_items[{i}]"))

        if not items:
            raise ValidationError("An invoice needs at least one billable item.")

        policy = (
            PatientInsurance.objects.select_related('provider')
            .filter(patient=patient, is_primary=True, is_active=True, is_deleted=False)
            .first()
        )

        now = timezone.now()
        with transaction.atomic():
            invoice = Invoice(
                invoice_number=next_invoice_number(now.year),
                patient=patient,
                visit=visit,
                appointment_id=appointment_id,
                status='DRAFT' if draft else 'SENT',
                sent_at=None if draft else now,
                due_date=(now + timedelta(days=medbill_setting('INVOICE_DUE_DAYS'))).date(),
                notes=notes or '',
                created_by=created_by,
            )
            invoice.recalculate_totals(items)
            invoice.save()

            for position, item in enumerate(items):
                item.invoice = invoice
                item.position = position
            InvoiceItem.objects.bulk_create(items)

            if policy is not None:
                self.attach_insurance(invoice, policy)

        logger.info(
            "Invoice %s created for patient %s: %d items, total %s",
            invoice.invoice_number, patient.pk, len(items), invoice.total_amount
        )
        emit_on_commit('billing_update', {
            'invoice_number': invoice.invoice_number,
            'amount': str(invoice.total_amount),
            'status': invoice.status,
        })
        return invoice

    def _price(self, department, name_or_code=None):
        return resolve_price(department, name_or_code, catalog=self.catalog)

    def consultation_item(self, fee):
        hit = self._price('CONSULTATION')
        if hit is not None:
            unit_price, description, code = hit.price, hit.name, hit.code
        else:
            unit_price = _require_money(fee, 'consultation_fee')
            description, code = 'Medical Consultation', CONSULTATION_CODE
        item = InvoiceItem(type='CONSULTATION', description=description, service_code=code,
                           quantity=1, unit_price=unit_price)
        item.compute_amounts()
        return item

    def lab_items(self, patient, order_id):
        order = (
            LabOrder.objects.filter(pk=order_id, patient=patient, is_deleted=False)
            .prefetch_related('items__test')
            .first()
        )
        if order is None:
            logger.warning("Lab order %s not found for patient %s; skipped", order_id, patient.pk)
            return []

        items = []
        for order_item in order.items.all():
            test = order_item.test
            hit = self._price('LABORATORY', test.name)
            if hit is not None:
                unit_price, code = hit.price, hit.code
            elif test.price and test.price > 0:
                unit_price, code = money(test.price), test.code or LAB_CODE
            else:
                unit_price, code = fallback_price('LABORATORY'), test.code or LAB_CODE
            item = InvoiceItem(type='LABORATORY', description=test.name, service_code=code,
                               source_id=order_item.pk, quantity=1, unit_price=unit_price)
            item.compute_amounts()
            items.append(item)
        return items

    def pharmacy_items(self, patient, prescription_id):
        prescription = (
            Prescription.objects.filter(pk=prescription_id, patient=patient, is_deleted=False)
            .prefetch_related('medications')
            .first()
        )
        if prescription is None:
            logger.warning("Prescription %s not found for patient %s; skipped", prescription_id, patient.pk)
            return []

        items = []
        for med in prescription.medications.all():
            hit = self._price('PHARMACY', med.name)
            if hit is not None:
                unit_price, code = hit.price, hit.code
            else:
                logger.warning("No pharmacy price for %r; using default", med.name)
                unit_price, code = fallback_price('PHARMACY'), PHARMACY_CODE
            description = f"{med.name} - {med.dosage}" if med.dosage else med.name
            item = InvoiceItem(type='PHARMACY', description=description, service_code=code,
                               source_id=med.pk, quantity=parse_quantity(med.quantity), unit_price=unit_price)
            item.compute_amounts()
            items.append(item)
        return items

    def explicit_item(self, data, default_type, field):
        if not isinstance(data, dict):
            raise ValidationError({field: "Each item must be an object."})
        item_type = data.get('type') or default_type
        if not isinstance(item_type, str) or item_type not in dict(InvoiceItem.TYPE_CHOICES):
            raise ValidationError({field: f"Unknown item type {item_type!r}."})

        quantity = data.get('quantity', 1)
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            parsed = to_decimal(quantity)
            if parsed is None or not parsed.is_finite() or parsed != parsed.to_integral_value():
                raise ValidationError({field: "Quantity must be a whole number."})
            quantity = int(parsed)
        if quantity <= 0:
            raise ValidationError({field: "Quantity must be greater than zero."})

        unit_price = _require_money(data.get('unit_price'), f"{field}.unit_price")
        description = data.get('description') or ''
        code = data.get('code') or data.get('service_code') or ''
        if not isinstance(description, str) or not isinstance(code, str):
            raise ValidationError({field: "Code and description must be text."})
        description, code = description.strip(), code.strip()
        if not description or not code:
            raise ValidationError({field: "Code and description are required."})

        item = InvoiceItem(
            type=item_type,
            description=description,
            service_code=code,
            quantity=quantity,
            unit_price=unit_price,
            discount_percent=_require_percent(data.get('discount_percent'), f"{field}.discount_percent", HUNDRED),
            tax_percent=_require_percent(data.get('tax_percent'), f"{field}.tax_percent"),
        )
        item.compute_amounts()
        return item

    @staticmethod
    def attach_insurance(invoice, policy):
        rate = policy.provider.reimbursement_rate
        if rate is None:
            rate = to_decimal(medbill_setting('DEFAULT_REIMBURSEMENT_RATE'))
        coverage_amount = percent_of(invoice.subtotal, rate)
        deductible = money(policy.deductible_amount)
        return InvoiceInsurance.objects.create(
            invoice=invoice,
            provider_name=policy.provider.name,
            policy_number=policy.policy_number,
            group_number=policy.group_number,
            coverage_percent=rate,
            coverage_amount=coverage_amount,
            deductible=deductible,
            patient_responsibility=money(invoice.subtotal - coverage_amount + deductible),
        )


class PaymentLedger:
    """Applies payments and insurance outcomes to a single invoice."""

    @staticmethod
    def _lock(invoice_id):
        try:
            return Invoice.objects.select_for_update().get(pk=invoice_id, is_deleted=False)
        except Invoice.DoesNotExist:
            raise NotFoundError("Invoice not found")

    @staticmethod
    def _save(invoice, fields):
        invoice.version += 1
        invoice.save(update_fields=list(fields) + ['version', 'updated_at'])

    @classmethod
    def record_payment(cls, invoice_id, method, amount, processed_by, reference='', notes='',
                       card_last4='', insurance_claim_number=''):
        amount = _require_money(amount, 'amount')
        if method not in dict(Payment.METHOD_CHOICES):
            raise ValidationError({'method': f"Unknown payment method {method!r}."})

        with transaction.atomic():
            invoice = cls._lock(invoice_id)
            if invoice.status == 'CANCELLED':
                raise StateConflictError(f"Invoice {invoice.invoice_number} is cancelled.")
            if invoice.total_paid + amount > invoice.total_amount:
                raise OverpaymentError(
                    f"Payment amount exceeds invoice balance of {invoice.balance} on {invoice.invoice_number}."
                )

            payment = Payment.objects.create(
                invoice=invoice,
                method=method,
                amount=amount,
                transaction_id=reference or '',
                card_last4=card_last4 or '',
                insurance_claim_number=insurance_claim_number or '',
                processed_by=processed_by,
                notes=notes or '',
            )
            invoice.total_paid = money(invoice.total_paid + amount)
            invoice.apply_payment_state()
            cls._save(invoice, ['total_paid', 'balance', 'status', 'paid_at'])

        logger.info(
            "Payment %s %s recorded on %s; status %s, balance %s",
            method, amount, invoice.invoice_number, invoice.status, invoice.balance
        )
        emit_on_commit('billing_update', {
            'invoice_number': invoice.invoice_number,
            'amount': str(invoice.total_amount),
            'paid': str(invoice.total_paid),
            'status': invoice.status,
        })
        return invoice, payment

    @classmethod
    def cancel_invoice(cls, invoice_id, actor, reason=''):
        with transaction.atomic():
            invoice = cls._lock(invoice_id)
            if invoice.status == 'CANCELLED':
                raise StateConflictError(f"Invoice {invoice.invoice_number} is already cancelled.")
            if invoice.total_paid > 0:
                raise StateConflictError(
                    f"Invoice {invoice.invoice_number} has payments and cannot be cancelled."
                )
            invoice.status = 'CANCELLED'
            if reason:
                invoice.notes = f"{invoice.notes}\nCancelled: {reason}".strip()
            cls._save(invoice, ['status', 'notes'])
        logger.info("Invoice %s cancelled by %s", invoice.invoice_number, actor.pk)
        return invoice

    @classmethod
    def _lock_insurance(cls, invoice_id):
        invoice = cls._lock(invoice_id)
        try:
            insurance = InvoiceInsurance.objects.select_for_update().get(invoice=invoice)
        except InvoiceInsurance.DoesNotExist:
            raise ValidationError("No insurance information found for this invoice.")
        return invoice, insurance

    @classmethod
    def submit_insurance_claim(cls, invoice_id, claim_number, actor):
        if not claim_number:
            raise ValidationError({'claim_number': "This field is required."})
        with transaction.atomic():
            invoice, insurance = cls._lock_insurance(invoice_id)
            if insurance.claim_submitted:
                raise StateConflictError("Insurance claim already submitted.")
            insurance.claim_submitted = True
            insurance.claim_number = claim_number
            insurance.claim_status = 'PENDING'
            insurance.save(update_fields=['claim_submitted', 'claim_number', 'claim_status', 'updated_at'])
            cls._save(invoice, [])
        logger.info("Invoice %s insurance claim %s submitted by %s", invoice.invoice_number, claim_number, actor.pk)
        return insurance

    @classmethod
    def update_insurance_claim_status(cls, invoice_id, claim_status, actor, approved_amount=None, denial_reason=''):
        if claim_status not in dict(InvoiceInsurance.CLAIM_STATUS_CHOICES):
            raise ValidationError({'claim_status': f"Unknown claim status {claim_status!r}."})
        approved = None
        if approved_amount not in (None, ''):
            approved = _require_money(approved_amount, 'approved_amount')

        with transaction.atomic():
            invoice, insurance = cls._lock_insurance(invoice_id)
            insurance.claim_status = claim_status

            if claim_status == 'APPROVED' and approved:
                invoice, _ = cls.record_payment(
                    invoice.pk, 'INSURANCE', approved, actor,
                    insurance_claim_number=insurance.claim_number,
                    notes='Insurance claim approved',
                )
                insurance.patient_responsibility = max(ZERO, money(invoice.total_amount - invoice.total_paid))

            if claim_status == 'DENIED' and denial_reason:
                insurance.denial_reason = denial_reason

            insurance.save()
        logger.info("Invoice %s insurance status -> %s", invoice.invoice_number, claim_status)
        return invoice, insurance
