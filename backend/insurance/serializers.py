from rest_framework import serializers

from patients.serializers import PatientSummarySerializer
from users.serializers import UserSummarySerializer
from .models import (
    ClaimDiagnosis, ClaimInsuranceResponse, ClaimPatientResponsibility, ClaimPayment,
    ClaimProcedure, ClaimStatusHistory, InsuranceClaim,
)


class ClaimDiagnosisSerializer(serializers.ModelSerializer):
    class Meta:
        model = ClaimDiagnosis
        fields = ['icd10_code', 'description', 'is_primary']


class ClaimProcedureSerializer(serializers.ModelSerializer):
    class Meta:
        model = ClaimProcedure
        fields = ['cpt_code', 'description', 'quantity', 'unit_price', 'total_amount']
        read_only_fields = ['total_amount']


class ClaimStatusHistorySerializer(serializers.ModelSerializer):
    updated_by = UserSummarySerializer(read_only=True)

    class Meta:
        model = ClaimStatusHistory
        fields = ['previous_status', 'new_status', 'reason', 'updated_by', 'notes', 'created_at']
        read_only_fields = fields


class ClaimPaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = ClaimPayment
        fields = ['amount', 'reference', 'created_at']
        read_only_fields = fields


class ClaimPatientResponsibilitySerializer(serializers.ModelSerializer):
    total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = ClaimPatientResponsibility
        fields = ['copay', 'deductible', 'coinsurance', 'total']
        read_only_fields = fields


class ClaimInsuranceResponseSerializer(serializers.ModelSerializer):
    class Meta:
        model = ClaimInsuranceResponse
        fields = ['response_date', 'explanation_of_benefits', 'denial_reason', 'adjustment_reason', 'reimbursement_rate']
        read_only_fields = fields


class InsuranceClaimListSerializer(serializers.ModelSerializer):
    patient_name = serializers.CharField(source='patient.full_name', read_only=True)
    provider_name = serializers.CharField(source='provider.display_name', read_only=True)
    invoice_number = serializers.CharField(source='invoice.invoice_number', read_only=True)

    class Meta:
        model = InsuranceClaim
        fields = [
            'id', 'claim_number', 'patient', 'patient_name', 'provider_name', 'invoice_number',
            'service_date', 'submission_date', 'total_claim_amount', 'approved_amount', 'paid_amount',
            'status', 'created_at',
        ]
        read_only_fields = fields


class InsuranceClaimSerializer(serializers.ModelSerializer):
    patient = PatientSummarySerializer(read_only=True)
    provider = UserSummarySerializer(read_only=True)
    last_updated_by = UserSummarySerializer(read_only=True)
    invoice_number = serializers.CharField(source='invoice.invoice_number', read_only=True)
    insurance_provider = serializers.CharField(source='policy.provider.name', read_only=True)
    policy_number = serializers.CharField(source='policy.policy_number', read_only=True)
    diagnoses = ClaimDiagnosisSerializer(many=True, read_only=True)
    procedures = ClaimProcedureSerializer(many=True, read_only=True)
    status_history = ClaimStatusHistorySerializer(many=True, read_only=True)
    payments = ClaimPaymentSerializer(many=True, read_only=True)
    patient_responsibility = serializers.SerializerMethodField()
    insurance_response = serializers.SerializerMethodField()
    prior_authorization = serializers.SerializerMethodField()
    remaining_balance = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    remaining_patient_responsibility = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = InsuranceClaim
        fields = [
            'id', 'claim_number', 'patient', 'provider', 'invoice', 'invoice_number', 'policy',
            'insurance_provider', 'policy_number', 'service_date', 'submission_date',
            'diagnoses', 'procedures', 'total_claim_amount', 'approved_amount', 'paid_amount',
            'remaining_balance', 'remaining_patient_responsibility', 'patient_responsibility',
            'status', 'status_history', 'payments', 'insurance_response', 'prior_authorization',
            'notes', 'last_updated_by', 'version', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_patient_responsibility(self, obj):
        breakdown = getattr(obj, 'responsibility', None)
        return ClaimPatientResponsibilitySerializer(breakdown).data if breakdown is not None else None

    def get_insurance_response(self, obj):
        response = getattr(obj, 'insurance_response', None)
        return ClaimInsuranceResponseSerializer(response).data if response is not None else None

    def get_prior_authorization(self, obj):
        return {
            'is_required': obj.prior_auth_required,
            'authorization_number': obj.prior_auth_number,
            'authorization_date': obj.prior_auth_date,
            'expiration_date': obj.prior_auth_expiration,
            'status': obj.prior_auth_status,
        }


class DiagnosisInputSerializer(serializers.Serializer):
    icd10_code = serializers.RegexField(r'^[A-Za-z][0-9][0-9A-Za-z](\.[0-9A-Za-z]{1,4})?$', max_length=10)
    description = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    is_primary = serializers.BooleanField(required=False, default=False)


class ProcedureInputSerializer(serializers.Serializer):
    cpt_code = serializers.CharField(max_length=10)
    description = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    quantity = serializers.IntegerField(min_value=1, required=False, default=1)
    unit_price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)


class PriorAuthorizationSerializer(serializers.Serializer):
    is_required = serializers.BooleanField(required=False, default=False)
    authorization_number = serializers.CharField(max_length=50, required=False, allow_blank=True)
    authorization_date = serializers.DateField(required=False, allow_null=True)
    expiration_date = serializers.DateField(required=False, allow_null=True)
    status = serializers.ChoiceField(
        choices=['PENDING', 'APPROVED', 'DENIED', 'EXPIRED'], required=False, allow_blank=True
    )


class ClaimCreateSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    policy_id = serializers.UUIDField()
    invoice_id = serializers.UUIDField()
    provider_id = serializers.UUIDField(required=False, allow_null=True)
    service_date = serializers.DateField()
    total_claim_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    diagnosis_codes = DiagnosisInputSerializer(many=True, allow_empty=False)
    procedure_codes = ProcedureInputSerializer(many=True, required=False, default=list)
    prior_authorization = PriorAuthorizationSerializer(required=False)
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class ClaimUpdateSerializer(serializers.Serializer):
    diagnosis_codes = DiagnosisInputSerializer(many=True, required=False, allow_empty=False)
    procedure_codes = ProcedureInputSerializer(many=True, required=False)
    total_claim_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    prior_authorization = PriorAuthorizationSerializer(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class InsuranceResponseInputSerializer(serializers.Serializer):
    explanation_of_benefits = serializers.CharField(required=False, allow_blank=True)
    denial_reason = serializers.CharField(required=False, allow_blank=True)
    adjustment_reason = serializers.CharField(required=False, allow_blank=True)
    reimbursement_rate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True)
    approved_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    paid_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)


class ClaimStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=InsuranceClaim.STATUS_CHOICES)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    approved_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    paid_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    payment_reference = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    insurance_response = InsuranceResponseInputSerializer(required=False)


class ClaimStatisticsQuerySerializer(serializers.Serializer):
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)
    provider_id = serializers.UUIDField(required=False)

    def validate(self, attrs):
        start, end = attrs.get('date_from'), attrs.get('date_to')
        if start and end and end < start:
            raise serializers.ValidationError({'date_to': "Must not be before date_from."})
        return attrs
