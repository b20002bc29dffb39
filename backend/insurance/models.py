from django.conf import settings
from django.db import models
from django.core.validators import MinValueValidator, MaxValueValidator

from core.models import BaseModel
from core.money import ZERO, money
from patients.models import Patient
from billing.models import Invoice


class InsuranceProvider(BaseModel):
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=30, unique=True)
    phone = models.CharField(max_length=20, blank=True)
    email = models.EmailField(blank=True)
    address = models.TextField(blank=True)
    # Contracted share of billed amounts; unset means the policy default (80%).
    reimbursement_rate = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.code})"


class PatientInsurance(BaseModel):
    RELATIONSHIP_CHOICES = (
        ('SELF', 'Self'),
        ('SPOUSE', 'Spouse'),
        ('CHILD', 'Child'),
        ('OTHER', 'Other'),
    )

    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='insurance_policies')
    provider = models.ForeignKey(InsuranceProvider, on_delete=models.PROTECT, related_name='policies')
    policy_number = models.CharField(max_length=50)
    group_number = models.CharField(max_length=50, blank=True)
    subscriber_name = models.CharField(max_length=255)
    relationship = models.CharField(max_length=10, choices=RELATIONSHIP_CHOICES, default='SELF')
    effective_date = models.DateField()
    expiration_date = models.DateField(null=True, blank=True)
    copay_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0, validators=[MinValueValidator(0)])
    deductible_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0, validators=[MinValueValidator(0)])
    is_primary = models.BooleanField(default=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['patient'],
                condition=models.Q(is_primary=True, is_active=True),
                name='one_active_primary_policy_per_patient',
            ),
        ]

    def __str__(self):
        return f"{self.provider.name} #{self.policy_number}"


class InsuranceClaim(BaseModel):
    STATUS_CHOICES = (
        ('DRAFT', 'Draft'),
        ('SUBMITTED', 'Submitted'),
        ('UNDER_REVIEW', 'Under Review'),
        ('APPROVED', 'Approved'),
        ('PARTIALLY_APPROVED', 'Partially Approved'),
        ('DENIED', 'Denied'),
        ('PAID', 'Paid'),
        ('REJECTED', 'Rejected'),
        ('APPEAL_SUBMITTED', 'Appeal Submitted'),
        ('APPEAL_APPROVED', 'Appeal Approved'),
        ('APPEAL_DENIED', 'Appeal Denied'),
        ('CLOSED', 'Closed'),
        ('CANCELLED', 'Cancelled'),
    )

    claim_number = models.CharField(max_length=20, unique=True, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='insurance_claims')
    policy = models.ForeignKey(PatientInsurance, on_delete=models.PROTECT, related_name='claims')
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name='insurance_claims')
    provider = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='provided_claims')

    service_date = models.DateField()
    submission_date = models.DateTimeField(null=True, blank=True)

    total_claim_amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    approved_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='DRAFT')

    # Prior authorization
    prior_auth_required = models.BooleanField(default=False)
    prior_auth_number = models.CharField(max_length=50, blank=True)
    prior_auth_date = models.DateField(null=True, blank=True)
    prior_auth_expiration = models.DateField(null=True, blank=True)
    prior_auth_status = models.CharField(
        max_length=10, blank=True,
        choices=(('PENDING', 'Pending'), ('APPROVED', 'Approved'), ('DENIED', 'Denied'), ('EXPIRED', 'Expired'))
    )

    notes = models.TextField(blank=True)
    submitted_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='+')
    last_updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    version = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['patient', '-service_date']),
            models.Index(fields=['status']),
            models.Index(fields=['-submission_date']),
        ]

    def __str__(self):
        return f"Claim {self.claim_number} ({self.get_status_display()})"

    @property
    def remaining_balance(self):
        return money(self.total_claim_amount - self.paid_amount)

    @property
    def remaining_patient_responsibility(self):
        return max(ZERO, self.remaining_balance)

    @property
    def total_patient_responsibility(self):
        breakdown = getattr(self, 'responsibility', None)
        if breakdown is None:
            return None
        return breakdown.total


class ClaimDiagnosis(BaseModel):
    claim = models.ForeignKey(InsuranceClaim, on_delete=models.CASCADE, related_name='diagnoses')
    icd10_code = models.CharField(max_length=10)
    description = models.CharField(max_length=255, blank=True)
    is_primary = models.BooleanField(default=False)

    class Meta:
        ordering = ['-is_primary', 'created_at']
        indexes = [models.Index(fields=['icd10_code'])]

    def __str__(self):
        return self.icd10_code


class ClaimProcedure(BaseModel):
    claim = models.ForeignKey(InsuranceClaim, on_delete=models.CASCADE, related_name='procedures')
    cpt_code = models.CharField(max_length=10)
    description = models.CharField(max_length=255, blank=True)
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(0)])
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])

    class Meta:
        ordering = ['created_at']
        indexes = [models.Index(fields=['cpt_code'])]

    def __str__(self):
        return f"{self.cpt_code} x{self.quantity}"


class ClaimPatientResponsibility(BaseModel):
    claim = models.OneToOneField(InsuranceClaim, on_delete=models.CASCADE, related_name='responsibility')
    copay = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    deductible = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    coinsurance = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    @property
    def total(self):
        return money(self.copay + self.deductible + self.coinsurance)


class ClaimInsuranceResponse(BaseModel):
    claim = models.OneToOneField(InsuranceClaim, on_delete=models.CASCADE, related_name='insurance_response')
    response_date = models.DateTimeField()
    explanation_of_benefits = models.TextField(blank=True)
    denial_reason = models.TextField(blank=True)
    adjustment_reason = models.TextField(blank=True)
    reimbursement_rate = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)


class ClaimStatusHistory(BaseModel):
    claim = models.ForeignKey(InsuranceClaim, on_delete=models.CASCADE, related_name='status_history')
    previous_status = models.CharField(max_length=20, choices=InsuranceClaim.STATUS_CHOICES)
    new_status = models.CharField(max_length=20, choices=InsuranceClaim.STATUS_CHOICES)
    reason = models.CharField(max_length=255, blank=True)
    updated_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='+')
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ['created_at']
        verbose_name_plural = 'claim status history'

    def __str__(self):
        return f"{self.previous_status} -> {self.new_status}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Claim history is append-only")
        super().save(*args, **kwargs)


class ClaimPayment(BaseModel):
    claim = models.ForeignKey(InsuranceClaim, on_delete=models.CASCADE, related_name='payments')
    amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    reference = models.CharField(max_length=100, blank=True)
    posted_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='+')

    class Meta:
        ordering = ['created_at']

    def __str__(self):
        return f"{self.amount} on {self.claim.claim_number}"
