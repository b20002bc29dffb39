from django.contrib import admin
from .models import LabTest, LabOrder, LabOrderItem


class LabOrderItemInline(admin.TabularInline):
    model = LabOrderItem
    extra = 1


@admin.register(LabOrder)
class LabOrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'status', 'created_at')
    list_filter = ('status',)
    inlines = [LabOrderItemInline]


@admin.register(LabTest)
class LabTestAdmin(admin.ModelAdmin):
    list_display = ('name', 'code', 'category', 'price')
    list_filter = ('category',)
    search_fields = ('name', 'code')
