from rest_framework import serializers

from insurance.models import InsuranceProvider, PatientInsurance
from patients.models import Visit
from patients.serializers import PatientSummarySerializer
from .models import Invoice, InvoiceInsurance, InvoiceItem, Payment


class InvoiceItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceItem
        fields = [
            'id', 'position', 'type', 'description', 'service_code', 'quantity', 'unit_price',
            'discount_percent', 'discount_amount', 'tax_percent', 'tax_amount', 'net_amount',
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    processed_by = serializers.CharField(source='processed_by.username', read_only=True)

    class Meta:
        model = Payment
        fields = [
            'id', 'method', 'amount', 'transaction_id', 'card_last4', 'insurance_claim_number',
            'processed_by', 'paid_at', 'notes',
        ]
        read_only_fields = fields


class InvoiceInsuranceSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceInsurance
        fields = [
            'provider_name', 'policy_number', 'group_number', 'coverage_percent', 'coverage_amount',
            'deductible', 'patient_responsibility', 'claim_submitted', 'claim_number', 'claim_status',
            'denial_reason',
        ]
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    patient = PatientSummarySerializer(read_only=True)
    items = InvoiceItemSerializer(many=True, read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)
    insurance = serializers.SerializerMethodField()
    is_overdue = serializers.BooleanField(read_only=True)
    patient_responsibility = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Invoice
        fields = [
            'id', 'invoice_number', 'patient', 'visit', 'appointment_id', 'items',
            'subtotal', 'total_discount', 'total_tax', 'total_amount', 'total_paid', 'balance',
            'status', 'is_overdue', 'sent_at', 'due_date', 'paid_at', 'insurance', 'patient_responsibility',
            'payments', 'notes', 'version', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_insurance(self, obj):
        insurance = getattr(obj, 'insurance', None)
        if insurance is None:
            return None
        return InvoiceInsuranceSerializer(insurance).data


class InvoiceListSerializer(serializers.ModelSerializer):
    patient_name = serializers.CharField(source='patient.full_name', read_only=True)
    is_overdue = serializers.BooleanField(read_only=True)

    class Meta:
        model = Invoice
        fields = [
            'id', 'invoice_number', 'patient', 'patient_name', 'total_amount', 'total_paid', 'balance',
            'status', 'is_overdue', 'due_date', 'created_at',
        ]
        read_only_fields = fields


class InvoiceItemInputSerializer(serializers.Serializer):
    # Shape only; InvoiceBuilder enforces positive prices.
    type = serializers.ChoiceField(choices=InvoiceItem.TYPE_CHOICES, required=False)
    code = serializers.CharField(max_length=30)
    description = serializers.CharField(max_length=255)
    quantity = serializers.IntegerField(min_value=1, required=False, default=1)
    unit_price = serializers.DecimalField(max_digits=10, decimal_places=2)
    discount_percent = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False
    )
    tax_percent = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0, required=False)


class InvoiceCreateSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    visit_id = serializers.UUIDField(required=False, allow_null=True)
    appointment_id = serializers.UUIDField(required=False, allow_null=True)
    consultation_fee = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    lab_orders = serializers.ListField(child=serializers.UUIDField(), required=False, default=list)
    prescriptions = serializers.ListField(child=serializers.UUIDField(), required=False, default=list)
    procedures = InvoiceItemInputSerializer(many=True, required=False, default=list)
    additional_items = InvoiceItemInputSerializer(many=True, required=False, default=list)
    draft = serializers.BooleanField(required=False, default=False)
    notes = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, attrs):
        visit_id = attrs.pop('visit_id', None)
        attrs['visit'] = None
        if visit_id:
            visit = Visit.objects.filter(pk=visit_id).first()
            if visit is None:
                raise serializers.ValidationError({'visit_id': "Visit not found."})
            attrs['visit'] = visit
        return attrs


class PaymentCreateSerializer(serializers.Serializer):
    method = serializers.ChoiceField(choices=Payment.METHOD_CHOICES)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    reference = serializers.CharField(required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    card_last4 = serializers.RegexField(r'^\d{4}$', required=False, allow_blank=True, default='')
    insurance_claim_number = serializers.CharField(required=False, allow_blank=True, default='')


class InvoiceCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class InsuranceSubmitSerializer(serializers.Serializer):
    claim_number = serializers.CharField(max_length=50)


class InsuranceStatusSerializer(serializers.Serializer):
    claim_status = serializers.ChoiceField(choices=InvoiceInsurance.CLAIM_STATUS_CHOICES)
    approved_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    denial_reason = serializers.CharField(required=False, allow_blank=True, default='')


class InsuranceProviderSerializer(serializers.ModelSerializer):
    class Meta:
        model = InsuranceProvider
        fields = ['id', 'name', 'code', 'phone', 'email', 'address', 'reimbursement_rate', 'is_active']


class PatientInsuranceSerializer(serializers.ModelSerializer):
    provider = InsuranceProviderSerializer(read_only=True)
    provider_id = serializers.PrimaryKeyRelatedField(
        queryset=InsuranceProvider.objects.filter(is_active=True, is_deleted=False),
        source='provider', write_only=True,
    )

    class Meta:
        model = PatientInsurance
        fields = [
            'id', 'provider', 'provider_id', 'policy_number', 'group_number', 'subscriber_name',
            'relationship', 'effective_date', 'expiration_date', 'copay_amount', 'deductible_amount',
            'is_primary', 'is_active', 'created_at',
        ]
        read_only_fields = ['id', 'created_at']

    def validate(self, attrs):
        start, end = attrs.get('effective_date'), attrs.get('expiration_date')
        if start and end and end < start:
            raise serializers.ValidationError({'expiration_date': "Must not be before the effective date."})
        return attrs
