from django.db import models
from django.conf import settings
from core.models import BaseModel
from patients.models import Patient, Visit


class Prescription(BaseModel):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='prescriptions')
    visit = models.ForeignKey(Visit, on_delete=models.SET_NULL, null=True, blank=True, related_name='prescriptions')
    prescribed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    notes = models.TextField(blank=True)

    def __str__(self):
        return f"Prescription {self.id} - {self.patient.full_name}"


class PrescriptionMedication(BaseModel):
    prescription = models.ForeignKey(Prescription, on_delete=models.CASCADE, related_name='medications')
    name = models.CharField(max_length=255)
    dosage = models.CharField(max_length=50, blank=True)  # e.g. "500mg"
    frequency = models.CharField(max_length=50, blank=True)  # e.g. "1-0-1"
    duration = models.CharField(max_length=50, blank=True)  # e.g. "5 Days"
    # Free text as written by the prescriber, e.g. "10" or "1 strip".
    quantity = models.CharField(max_length=50, blank=True)

    class Meta:
        ordering = ['created_at']

    def __str__(self):
        return f"{self.name} {self.dosage}".strip()
