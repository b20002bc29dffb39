import logging

from django.contrib.auth import get_user_model
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from core.exceptions import NotFoundError, ValidationError
from core.permissions import DOCTOR, HasCapability
from patients.models import Patient
from reports.services import claims_statistics, scope_claims_for
from .filters import ClaimFilter
from .models import InsuranceClaim
from .serializers import (
    ClaimCreateSerializer, ClaimStatisticsQuerySerializer, ClaimStatusUpdateSerializer,
    ClaimUpdateSerializer, InsuranceClaimListSerializer, InsuranceClaimSerializer,
)
from .services import ClaimService, ensure_can_view

logger = logging.getLogger(__name__)

User = get_user_model()


class ClaimViewSet(mixins.ListModelMixin,
                   mixins.RetrieveModelMixin,
                   viewsets.GenericViewSet):
    """
    Insurance claims. Reads are scoped to the caller; every write goes
    through ClaimService so history, numbering and locking stay in one place.
    """
    permission_classes = [HasCapability]
    capabilities = {
        'create': 'claim.create',
        'list': 'claim.view',
        'retrieve': 'claim.view',
        'update': 'claim.edit',
        'partial_update': 'claim.edit',
        'destroy': 'claim.cancel',
        'submit': 'claim.submit',
        'update_status': 'claim.status',
        'statistics': 'claim.statistics',
    }
    filter_backends = [DjangoFilterBackend]
    filterset_class = ClaimFilter
    lookup_value_regex = '[0-9a-fA-F-]{36}'

    def _claims(self, qs=None):
        if qs is None:
            qs = InsuranceClaim.objects.filter(is_deleted=False)
        return (
            qs
            .select_related(
                'patient', 'provider', 'invoice', 'policy__provider', 'last_updated_by',
                'responsibility', 'insurance_response',
            )
            .prefetch_related('diagnoses', 'procedures', 'status_history__updated_by', 'payments')
        )

    def get_queryset(self):
        scoped = scope_claims_for(self.request.user, self.request.query_params.get('provider_id'))
        return self._claims(scoped).order_by('-created_at')

    def get_serializer_class(self):
        if self.action == 'list':
            return InsuranceClaimListSerializer
        return InsuranceClaimSerializer

    def get_object(self):
        claim = self._claims().filter(pk=self.kwargs['pk']).first()
        if claim is None:
            raise NotFoundError("Insurance claim not found")
        ensure_can_view(claim, self.request.user)
        self.check_object_permissions(self.request, claim)
        return claim

    def _detail(self, claim, code=status.HTTP_200_OK, message=None):
        data = {'data': InsuranceClaimSerializer(self._claims().get(pk=claim.pk)).data}
        if message:
            data['message'] = message
        return Response(data, status=code)

    def create(self, request):
        serializer = ClaimCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        patient = Patient.objects.filter(pk=data['patient_id'], is_deleted=False).first()
        if patient is None:
            raise NotFoundError("Patient not found")

        provider = None
        if data.get('provider_id'):
            provider = User.objects.filter(pk=data['provider_id'], role=DOCTOR, is_active=True).first()
            if provider is None:
                raise ValidationError({'provider_id': "Provider must be an active doctor."})

        claim = ClaimService.create_claim(
            actor=request.user,
            patient=patient,
            policy_id=data['policy_id'],
            invoice_id=data['invoice_id'],
            service_date=data['service_date'],
            total_claim_amount=data.get('total_claim_amount'),
            diagnosis_codes=data['diagnosis_codes'],
            procedure_codes=data['procedure_codes'],
            prior_authorization=data.get('prior_authorization'),
            notes=data['notes'],
            provider=provider,
        )
        return self._detail(claim, status.HTTP_201_CREATED, 'Insurance claim created successfully')

    def update(self, request, pk=None, partial=False):
        claim = self.get_object()
        serializer = ClaimUpdateSerializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        claim = ClaimService.update_claim(claim.pk, request.user, serializer.validated_data)
        return self._detail(claim, message='Insurance claim updated successfully')

    def partial_update(self, request, pk=None):
        return self.update(request, pk, partial=True)

    def destroy(self, request, pk=None):
        claim = self.get_object()
        claim = ClaimService.cancel_claim(claim.pk, request.user)
        return self._detail(claim, message='Insurance claim cancelled successfully')

    @action(detail=True, methods=['patch'])
    def submit(self, request, pk=None):
        claim = self.get_object()
        claim = ClaimService.submit_claim(claim.pk, request.user)
        return self._detail(claim, message='Claim submitted successfully')

    @action(detail=True, methods=['patch'], url_path='status')
    def update_status(self, request, pk=None):
        claim = self.get_object()
        serializer = ClaimStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        claim = ClaimService.update_status(
            claim.pk,
            data['status'],
            request.user,
            reason=data['reason'],
            notes=data['notes'],
            approved_amount=data.get('approved_amount'),
            paid_amount=data.get('paid_amount'),
            insurance_response=data.get('insurance_response'),
            payment_reference=data['payment_reference'],
        )
        return self._detail(claim, message='Claim status updated successfully')

    @action(detail=False, methods=['get'])
    def statistics(self, request):
        query = ClaimStatisticsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data
        stats = claims_statistics(
            request.user,
            start_date=params.get('date_from'),
            end_date=params.get('date_to'),
            provider_id=params.get('provider_id'),
        )
        return Response({'data': stats})
