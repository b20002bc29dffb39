import logging
from decimal import Decimal

from django.db.models.functions import Coalesce, TruncMonth
from django.utils import timezone

from billing.models import Invoice, InvoiceItem
from core.money import ZERO, HUNDRED, money, round_half_up_int
from core.permissions import DOCTOR, PATIENT, STAFF_ROLES, role_of
from insurance.models import ClaimDiagnosis, ClaimProcedure, InsuranceClaim
from insurance.state_machine import APPROVED_STATES
from .aggregation import Aggregation, average, count, total

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = Decimal(86400)
UNPAID_STATUSES = ('DRAFT', 'SENT')


def _invoices(start_date, end_date):
    return Aggregation(Invoice.objects.filter(is_deleted=False)).filter(
        created_at__date__gte=start_date,
        created_at__date__lte=end_date,
    )


def summary_report(start_date, end_date):
    invoices = _invoices(start_date, end_date)
    billable = invoices.exclude(status='CANCELLED')
    today = timezone.localdate()

    totals = billable.totals(
        invoices=count(), billed=total('total_amount'), paid=total('total_paid'), outstanding=total('balance')
    )
    by_status = [
        {'status': row['key'], 'count': row['count'], 'amount': row['amount'], 'paid': row['paid']}
        for row in invoices.group_by('status', count=count(), amount=total('total_amount'), paid=total('total_paid'))
    ]
    overdue = billable.filter(
        status__in=('SENT', 'PARTIAL'), due_date__lt=today, balance__gt=0
    ).totals(count=count())['count']

    items = Aggregation(
        InvoiceItem.objects.filter(invoice__in=billable.source, is_deleted=False)
    )
    revenue_by_type = [
        {'type': row['key'], 'count': row['count'], 'revenue': row['revenue']}
        for row in items.group_by('type', order_by=['-revenue', 'type'], count=count(), revenue=total('net_amount'))
    ]

    return {
        'report_type': 'summary',
        'start_date': str(start_date),
        'end_date': str(end_date),
        'totals': totals,
        'by_status': by_status,
        'payment_breakdown': {
            'paid': billable.filter(status='PAID').totals(count=count())['count'],
            'partial': billable.filter(status='PARTIAL').totals(count=count())['count'],
            'unpaid': billable.filter(status__in=UNPAID_STATUSES).totals(count=count())['count'],
            'overdue': overdue,
        },
        'revenue_by_type': revenue_by_type,
    }


def detailed_report(start_date, end_date):
    invoices = (
        _invoices(start_date, end_date).source
        .select_related('patient')
        .order_by('-created_at')
    )
    return [{
        'invoice_number': inv.invoice_number,
        'patient': inv.patient.full_name,
        'total_amount': inv.total_amount,
        'total_paid': inv.total_paid,
        'balance': inv.balance,
        'status': inv.status,
        'is_overdue': inv.is_overdue,
        'created_at': inv.created_at,
    } for inv in invoices]


def scope_claims_for(user, provider_id=None):
    """Claims ``user`` may see: doctors their own, patients theirs, staff all."""
    claims = InsuranceClaim.objects.filter(is_deleted=False)
    role = role_of(user)
    if role == DOCTOR:
        return claims.filter(provider=user)
    if role == PATIENT:
        return claims.filter(patient__user=user)
    if role in STAFF_ROLES:
        if provider_id:
            claims = claims.filter(provider_id=provider_id)
        return claims
    return claims.none()


def approval_rate(approved, total_claims):
    if not total_claims:
        return 0
    return round_half_up_int(Decimal(approved) * HUNDRED / Decimal(total_claims))


def average_processing_days(claims):
    durations = [
        updated_at - submitted_at
        for updated_at, submitted_at in claims.filter(submission_date__isnull=False)
        .values_list('updated_at', 'submission_date')
    ]
    if not durations:
        return ZERO
    seconds = sum(Decimal(d.total_seconds()) for d in durations)
    return money(seconds / SECONDS_PER_DAY / len(durations))


def _descriptions(model, code_field, codes):
    found = {}
    rows = model.objects.filter(**{f'{code_field}__in': codes}).exclude(description='')
    for code, description in rows.values_list(code_field, 'description'):
        found.setdefault(code, description)
    return found


def claims_statistics(user, start_date=None, end_date=None, provider_id=None):
    claims = Aggregation(scope_claims_for(user, provider_id)).filter(
        service_date__gte=start_date or None,
        service_date__lte=end_date or None,
    )
    scoped = claims.source

    distribution = [
        {'status': row['key'], 'count': row['count']}
        for row in claims.group_by('status', order_by=['-count', 'status'], count=count())
    ]
    total_claims = sum(row['count'] for row in distribution)
    approved = sum(row['count'] for row in distribution if row['status'] in APPROVED_STATES)

    financial = claims.totals(
        total_claimed=total('total_claim_amount'),
        total_approved=total('approved_amount'),
        total_paid=total('paid_amount'),
        average_claim_amount=average('total_claim_amount'),
    )
    financial['average_processing_days'] = average_processing_days(scoped)

    month = ('month', TruncMonth(Coalesce('submission_date', 'created_at')))
    recent = claims.group_by(month, order_by=['-month'], count=count(), total_amount=total('total_claim_amount'))[:12]
    monthly = [
        {'month': row['key'].strftime('%Y-%m'), 'count': row['count'], 'total_amount': row['total_amount']}
        for row in reversed(recent)
    ]

    diagnoses = Aggregation(ClaimDiagnosis.objects.filter(claim__in=scoped, is_deleted=False)).top(
        'icd10_code', 10, by='count', count=count(), revenue=total('claim__total_claim_amount')
    )
    procedures = Aggregation(ClaimProcedure.objects.filter(claim__in=scoped, is_deleted=False)).top(
        'cpt_code', 10, by='count', count=count(), revenue=total('total_amount')
    )
    dx_names = _descriptions(ClaimDiagnosis, 'icd10_code', [row['key'] for row in diagnoses])
    px_names = _descriptions(ClaimProcedure, 'cpt_code', [row['key'] for row in procedures])

    return {
        'total_claims': total_claims,
        'approval_rate': approval_rate(approved, total_claims),
        'status_distribution': distribution,
        'financial_summary': financial,
        'monthly_trends': monthly,
        'top_diagnoses': [
            {'code': r['key'], 'description': dx_names.get(r['key'], ''), 'count': r['count'], 'revenue': r['revenue']}
            for r in diagnoses
        ],
        'top_procedures': [
            {'code': r['key'], 'description': px_names.get(r['key'], ''), 'count': r['count'], 'revenue': r['revenue']}
            for r in procedures
        ],
    }


def patient_billing_history(patient):
    invoices = Invoice.objects.filter(patient=patient, is_deleted=False).order_by('-created_at')
    totals = Aggregation(invoices).exclude(status='CANCELLED')
    return {
        'patient': patient,
        'invoices': invoices,
        'totals': totals.totals(
            invoices=count(), billed=total('total_amount'), paid=total('total_paid'), outstanding=total('balance')
        ),
    }
