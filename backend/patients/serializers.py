from rest_framework import serializers
from .models import Patient


class PatientSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Patient
        fields = ['id', 'full_name', 'phone', 'email']
        read_only_fields = fields
