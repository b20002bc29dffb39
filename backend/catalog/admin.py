from django.contrib import admin
from .models import ServiceCatalogEntry


@admin.register(ServiceCatalogEntry)
class ServiceCatalogEntryAdmin(admin.ModelAdmin):
    list_display = ('service_code', 'name', 'department', 'price', 'is_active')
    list_filter = ('department', 'is_active')
    search_fields = ('service_code', 'name')
