from django.contrib import admin
from .models import Prescription, PrescriptionMedication


class PrescriptionMedicationInline(admin.TabularInline):
    model = PrescriptionMedication
    extra = 1


@admin.register(Prescription)
class PrescriptionAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'prescribed_by', 'created_at')
    inlines = [PrescriptionMedicationInline]
