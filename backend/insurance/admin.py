from django.contrib import admin

from .models import (
    ClaimDiagnosis, ClaimPayment, ClaimProcedure, ClaimStatusHistory,
    InsuranceClaim, InsuranceProvider, PatientInsurance,
)


@admin.register(InsuranceProvider)
class InsuranceProviderAdmin(admin.ModelAdmin):
    list_display = ('name', 'code', 'reimbursement_rate', 'is_active')
    search_fields = ('name', 'code')
    list_filter = ('is_active',)


@admin.register(PatientInsurance)
class PatientInsuranceAdmin(admin.ModelAdmin):
    list_display = ('patient', 'provider', 'policy_number', 'is_primary', 'is_active', 'effective_date')
    list_filter = ('is_primary', 'is_active', 'provider')
    search_fields = ('patient__full_name', 'policy_number')


class ClaimDiagnosisInline(admin.TabularInline):
    model = ClaimDiagnosis
    extra = 0


class ClaimProcedureInline(admin.TabularInline):
    model = ClaimProcedure
    extra = 0


class ClaimStatusHistoryInline(admin.TabularInline):
    model = ClaimStatusHistory
    extra = 0
    can_delete = False
    readonly_fields = ('previous_status', 'new_status', 'reason', 'updated_by', 'notes', 'created_at')

    def has_add_permission(self, request, obj=None):
        return False


class ClaimPaymentInline(admin.TabularInline):
    model = ClaimPayment
    extra = 0
    can_delete = False
    readonly_fields = ('amount', 'reference', 'posted_by', 'created_at')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(InsuranceClaim)
class InsuranceClaimAdmin(admin.ModelAdmin):
    list_display = ('claim_number', 'patient', 'provider', 'status', 'total_claim_amount', 'paid_amount', 'service_date')
    list_filter = ('status', 'service_date')
    search_fields = ('claim_number', 'patient__full_name')
    # Status and money move only through the claim workflow
    readonly_fields = ('claim_number', 'status', 'approved_amount', 'paid_amount', 'version')
    inlines = [ClaimDiagnosisInline, ClaimProcedureInline, ClaimStatusHistoryInline, ClaimPaymentInline]
