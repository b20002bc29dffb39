from django.urls import path

from .views import BillingReportView

urlpatterns = [
    path('billing/', BillingReportView.as_view(), name='billing-report'),
]
