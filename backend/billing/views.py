import logging

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import AccessDeniedError, NotFoundError
from core.permissions import PATIENT, HasCapability, role_of
from insurance.models import InsuranceProvider, PatientInsurance
from insurance.services import add_patient_policy
from patients.models import Patient
from .filters import InvoiceFilter
from .models import Invoice
from .serializers import (
    InsuranceProviderSerializer, InsuranceStatusSerializer, InsuranceSubmitSerializer,
    InvoiceCancelSerializer, InvoiceCreateSerializer, InvoiceInsuranceSerializer, InvoiceListSerializer,
    InvoiceSerializer, PatientInsuranceSerializer, PaymentCreateSerializer, PaymentSerializer,
)
from .services import InvoiceBuilder, PaymentLedger

logger = logging.getLogger(__name__)

UUID_PATTERN = '[0-9a-fA-F-]{36}'


def get_patient(patient_id):
    patient = Patient.objects.filter(pk=patient_id, is_deleted=False).first()
    if patient is None:
        raise NotFoundError("Patient not found")
    return patient


class InvoiceViewSet(mixins.CreateModelMixin,
                     mixins.ListModelMixin,
                     mixins.RetrieveModelMixin,
                     viewsets.GenericViewSet):
    permission_classes = [HasCapability]
    capabilities = {
        'create': 'invoice.create',
        'list': 'invoice.view',
        'retrieve': 'invoice.view',
        'payments': 'invoice.pay',
        'cancel': 'invoice.cancel',
        'insurance_submit': 'invoice.insurance',
        'insurance_status': 'invoice.insurance',
    }
    filter_backends = [DjangoFilterBackend]
    filterset_class = InvoiceFilter
    lookup_value_regex = UUID_PATTERN

    def _invoices(self):
        return (
            Invoice.objects.filter(is_deleted=False)
            .select_related('patient', 'insurance')
            .prefetch_related('items', 'payments__processed_by')
            .order_by('-created_at')
        )

    def get_queryset(self):
        qs = self._invoices()
        # Patients only ever list their own invoices
        if role_of(self.request.user) == PATIENT:
            qs = qs.filter(patient__user=self.request.user)
        return qs

    def get_serializer_class(self):
        if self.action == 'list':
            return InvoiceListSerializer
        if self.action == 'create':
            return InvoiceCreateSerializer
        return InvoiceSerializer

    def get_object(self):
        invoice = self._invoices().filter(pk=self.kwargs['pk']).first()
        if invoice is None:
            raise NotFoundError("Invoice not found")
        if role_of(self.request.user) == PATIENT and invoice.patient.user_id != self.request.user.pk:
            raise AccessDeniedError("Access denied")
        self.check_object_permissions(self.request, invoice)
        return invoice

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        patient = get_patient(data['patient_id'])

        invoice = InvoiceBuilder().build(
            patient=patient,
            created_by=request.user,
            visit=data.get('visit'),
            appointment_id=data.get('appointment_id'),
            consultation_fee=data.get('consultation_fee'),
            lab_orders=data['lab_orders'],
            prescriptions=data['prescriptions'],
            procedures=data['procedures'],
            additional_items=data['additional_items'],
            draft=data['draft'],
            notes=data['notes'],
        )
        invoice = self._invoices().get(pk=invoice.pk)
        return Response(InvoiceSerializer(invoice).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def payments(self, request, pk=None):
        invoice = self.get_object()
        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        invoice, payment = PaymentLedger.record_payment(
            invoice.pk,
            method=data['method'],
            amount=data['amount'],
            processed_by=request.user,
            reference=data['reference'],
            notes=data['notes'],
            card_last4=data['card_last4'],
            insurance_claim_number=data['insurance_claim_number'],
        )
        return Response({
            'invoice_number': invoice.invoice_number,
            'total_amount': invoice.total_amount,
            'total_paid': invoice.total_paid,
            'balance': invoice.balance,
            'status': invoice.status,
            'payment': PaymentSerializer(payment).data,
        })

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        invoice = self.get_object()
        serializer = InvoiceCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        PaymentLedger.cancel_invoice(invoice.pk, request.user, serializer.validated_data['reason'])
        return Response(InvoiceSerializer(self._invoices().get(pk=invoice.pk)).data)

    @action(detail=True, methods=['post'], url_path='insurance/submit')
    def insurance_submit(self, request, pk=None):
        invoice = self.get_object()
        serializer = InsuranceSubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        insurance = PaymentLedger.submit_insurance_claim(
            invoice.pk, serializer.validated_data['claim_number'], request.user
        )
        return Response({
            'message': 'Insurance claim submitted successfully',
            'insurance': InvoiceInsuranceSerializer(insurance).data,
        })

    @action(detail=True, methods=['patch'], url_path='insurance/status')
    def insurance_status(self, request, pk=None):
        invoice = self.get_object()
        serializer = InsuranceStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        invoice, _ = PaymentLedger.update_insurance_claim_status(
            invoice.pk,
            data['claim_status'],
            request.user,
            approved_amount=data.get('approved_amount'),
            denial_reason=data['denial_reason'],
        )
        return Response(InvoiceSerializer(self._invoices().get(pk=invoice.pk)).data)


class InsuranceProviderViewSet(mixins.CreateModelMixin,
                               mixins.ListModelMixin,
                               mixins.RetrieveModelMixin,
                               viewsets.GenericViewSet):
    queryset = InsuranceProvider.objects.filter(is_deleted=False).order_by('name')
    serializer_class = InsuranceProviderSerializer
    permission_classes = [HasCapability]
    capabilities = {
        'list': 'insurance.provider.view',
        'retrieve': 'insurance.provider.view',
        'create': 'insurance.provider.manage',
    }
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['is_active']
    lookup_value_regex = UUID_PATTERN

    def perform_create(self, serializer):
        provider = serializer.save()
        logger.info("Insurance provider %s created by %s", provider.code, self.request.user.pk)


class PatientInsuranceView(APIView):
    permission_classes = [HasCapability]
    capabilities = {'GET': 'insurance.policy.manage', 'POST': 'insurance.policy.manage'}

    def get(self, request, patient_id):
        patient = get_patient(patient_id)
        policies = (
            PatientInsurance.objects.filter(patient=patient, is_deleted=False)
            .select_related('provider')
            .order_by('-is_primary', '-created_at')
        )
        return Response(PatientInsuranceSerializer(policies, many=True).data)

    def post(self, request, patient_id):
        patient = get_patient(patient_id)
        serializer = PatientInsuranceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        fields = dict(serializer.validated_data)
        provider = fields.pop('provider')
        policy = add_patient_policy(patient, provider, **fields)
        return Response(PatientInsuranceSerializer(policy).data, status=status.HTTP_201_CREATED)
