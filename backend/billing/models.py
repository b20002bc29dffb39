from django.conf import settings
from django.db import models
from django.core.validators import MinValueValidator, MaxValueValidator
from django.utils import timezone

from core.models import BaseModel
from core.money import ZERO, money, percent_of
from patients.models import Patient, Visit


class Invoice(BaseModel):
    STATUS_CHOICES = (
        ('DRAFT', 'Draft'),
        ('SENT', 'Sent'),
        ('PARTIAL', 'Partial'),
        ('PAID', 'Paid'),
        ('CANCELLED', 'Cancelled'),
    )

    invoice_number = models.CharField(max_length=20, unique=True, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='invoices')
    visit = models.ForeignKey(Visit, on_delete=models.SET_NULL, null=True, blank=True, related_name='invoices')
    appointment_id = models.UUIDField(null=True, blank=True)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_tax = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_paid = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    balance = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='DRAFT')
    sent_at = models.DateTimeField(null=True, blank=True)
    due_date = models.DateField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='+')
    version = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(condition=models.Q(balance__gte=0), name='invoice_balance_non_negative'),
        ]

    def __str__(self):
        return f"Invoice {self.invoice_number} - {self.total_amount}"

    @property
    def is_overdue(self):
        return (
            self.status in ('SENT', 'PARTIAL')
            and self.due_date is not None
            and self.due_date < timezone.localdate()
            and self.balance > 0
        )

    @property
    def patient_responsibility(self):
        insurance = getattr(self, 'insurance', None)
        if insurance is None:
            return self.total_amount
        return insurance.patient_responsibility

    def recalculate_totals(self, items):
        self.subtotal = money(sum((i.net_amount for i in items), ZERO))
        self.total_discount = money(sum((i.discount_amount for i in items), ZERO))
        self.total_tax = money(sum((i.tax_amount for i in items), ZERO))
        self.total_amount = self.subtotal
        self.apply_payment_state()

    def apply_payment_state(self):
        """
        Derive balance and status from (total_paid, total_amount).
        CANCELLED is an explicit terminal value and is left alone.
        """
        self.balance = money(self.total_amount - self.total_paid)
        if self.status == 'CANCELLED':
            return
        if self.total_paid <= 0:
            self.status = 'DRAFT' if self.status == 'DRAFT' else 'SENT'
        elif self.total_paid >= self.total_amount:
            self.status = 'PAID'
            if self.paid_at is None:
                self.paid_at = timezone.now()
        else:
            self.status = 'PARTIAL'


class InvoiceItem(BaseModel):
    TYPE_CHOICES = (
        ('CONSULTATION', 'Consultation'),
        ('LABORATORY', 'Laboratory'),
        ('PHARMACY', 'Pharmacy'),
        ('PROCEDURE', 'Procedure'),
        ('OTHER', 'Other'),
    )

    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='items')
    position = models.PositiveIntegerField(default=0)
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    description = models.CharField(max_length=255)
    service_code = models.CharField(max_length=30)
    # Generic reference to the source record (lab order item, medication)
    source_id = models.UUIDField(null=True, blank=True)

    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    discount_percent = models.DecimalField(
        max_digits=5, decimal_places=2, default=0, validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    tax_percent = models.DecimalField(max_digits=5, decimal_places=2, default=0, validators=[MinValueValidator(0)])
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    net_amount = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        ordering = ['position']

    def __str__(self):
        return f"{self.type}: {self.description}"

    @property
    def gross_amount(self):
        return money(self.quantity * self.unit_price)

    def compute_amounts(self):
        gross = self.gross_amount
        self.discount_amount = percent_of(gross, self.discount_percent)
        self.tax_amount = percent_of(gross - self.discount_amount, self.tax_percent)
        self.net_amount = money(gross - self.discount_amount + self.tax_amount)
        return self.net_amount


class Payment(BaseModel):
    METHOD_CHOICES = (
        ('CASH', 'Cash'),
        ('CARD', 'Card'),
        ('INSURANCE', 'Insurance'),
        ('TRANSFER', 'Transfer'),
        ('CHECK', 'Check'),
    )

    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name='payments')
    method = models.CharField(max_length=20, choices=METHOD_CHOICES)
    amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    transaction_id = models.CharField(max_length=100, blank=True)
    card_last4 = models.CharField(max_length=4, blank=True)
    insurance_claim_number = models.CharField(max_length=50, blank=True)
    processed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='+')
    paid_at = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ['paid_at', 'created_at']

    def __str__(self):
        return f"{self.method} {self.amount} on {self.invoice.invoice_number}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Payments are append-only")
        super().save(*args, **kwargs)


class InvoiceInsurance(BaseModel):
    """Lightweight insurance split carried on the invoice itself."""
    CLAIM_STATUS_CHOICES = (
        ('PENDING', 'Pending'),
        ('APPROVED', 'Approved'),
        ('DENIED', 'Denied'),
        ('PARTIAL', 'Partial'),
    )

    invoice = models.OneToOneField(Invoice, on_delete=models.CASCADE, related_name='insurance')
    provider_name = models.CharField(max_length=255)
    policy_number = models.CharField(max_length=50)
    group_number = models.CharField(max_length=50, blank=True)
    coverage_percent = models.DecimalField(
        max_digits=5, decimal_places=2, validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    coverage_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    deductible = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    patient_responsibility = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    claim_submitted = models.BooleanField(default=False)
    claim_number = models.CharField(max_length=50, blank=True)
    claim_status = models.CharField(max_length=20, choices=CLAIM_STATUS_CHOICES, default='PENDING')
    denial_reason = models.TextField(blank=True)

    def __str__(self):
        return f"{self.provider_name} / {self.policy_number}"
