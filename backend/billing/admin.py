from django.contrib import admin

from .models import Invoice, InvoiceInsurance, InvoiceItem, Payment


class InvoiceItemInline(admin.TabularInline):
    model = InvoiceItem
    extra = 0
    readonly_fields = ('discount_amount', 'tax_amount', 'net_amount')


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    can_delete = False
    readonly_fields = ('method', 'amount', 'transaction_id', 'processed_by', 'paid_at', 'notes')

    def has_add_permission(self, request, obj=None):
        return False


class InvoiceInsuranceInline(admin.StackedInline):
    model = InvoiceInsurance
    extra = 0


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'patient', 'total_amount', 'total_paid', 'balance', 'status', 'created_at')
    list_filter = ('status', 'created_at')
    search_fields = ('invoice_number', 'patient__full_name')
    # Totals are derived; payments go through the ledger
    readonly_fields = (
        'invoice_number', 'subtotal', 'total_discount', 'total_tax', 'total_amount',
        'total_paid', 'balance', 'status', 'paid_at', 'version',
    )
    inlines = [InvoiceItemInline, InvoiceInsuranceInline, PaymentInline]
