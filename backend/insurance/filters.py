import django_filters

from .models import InsuranceClaim


class ClaimFilter(django_filters.FilterSet):
    status = django_filters.ChoiceFilter(choices=InsuranceClaim.STATUS_CHOICES)
    patient = django_filters.UUIDFilter(field_name='patient_id')
    claim_number = django_filters.CharFilter(lookup_expr='icontains')
    date_from = django_filters.DateFilter(field_name='service_date', lookup_expr='gte')
    date_to = django_filters.DateFilter(field_name='service_date', lookup_expr='lte')

    class Meta:
        model = InsuranceClaim
        fields = ['status', 'patient', 'claim_number', 'date_from', 'date_to']
