from django.urls import path, include
from rest_framework.routers import DefaultRouter

from reports.views import PatientBillingHistoryView
from .views import InsuranceProviderViewSet, InvoiceViewSet, PatientInsuranceView

router = DefaultRouter()
router.register(r'invoices', InvoiceViewSet, basename='invoice')
router.register(r'insurance/providers', InsuranceProviderViewSet, basename='insurance-provider')

urlpatterns = [
    path('', include(router.urls)),
    path('reports/', include('reports.urls')),
    path('patients/<uuid:patient_id>/billing-history/', PatientBillingHistoryView.as_view(), name='patient-billing-history'),
    path('patients/<uuid:patient_id>/insurance/', PatientInsuranceView.as_view(), name='patient-insurance'),
]
