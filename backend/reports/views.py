import csv

from dateutil.parser import isoparse
from django.http import HttpResponse
from django.utils import timezone
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.serializers import InvoiceListSerializer
from core.exceptions import AccessDeniedError, NotFoundError, ValidationError
from core.permissions import PATIENT, HasCapability, role_of
from patients.models import Patient
from patients.serializers import PatientSummarySerializer
from . import services

DETAILED_HEADERS = ["Invoice Number", "Patient", "Total", "Paid", "Balance", "Status", "Overdue", "Date"]


class BaseReportView(APIView):
    permission_classes = [HasCapability]

    def _parse_date(self, name, value):
        try:
            return isoparse(value).date()
        except (ValueError, OverflowError):
            raise ValidationError({name: "Use the YYYY-MM-DD format."})

    def get_date_range(self, request):
        start_date = request.query_params.get('start_date')
        end_date = request.query_params.get('end_date')
        today = timezone.localdate()

        # Empty, null or undefined from the frontend means today
        start_date = self._parse_date('start_date', start_date) if start_date not in (None, '', 'null', 'undefined') else today
        end_date = self._parse_date('end_date', end_date) if end_date not in (None, '', 'null', 'undefined') else today
        if end_date < start_date:
            raise ValidationError({'end_date': "Must not be before start_date."})
        return start_date, end_date

    def export_csv(self, filename, headers, data):
        response = HttpResponse(content_type='text/csv')
        response['Content-Disposition'] = f'attachment; filename="{filename}.csv"'
        writer = csv.writer(response)
        writer.writerow(headers)
        for row in data:
            writer.writerow(row)
        return response


class BillingReportView(BaseReportView):
    capabilities = {'GET': 'billing.report'}

    def get(self, request):
        start_date, end_date = self.get_date_range(request)
        report_type = request.query_params.get('report_type', 'summary')

        if report_type == 'summary':
            return Response(services.summary_report(start_date, end_date))

        if report_type != 'detailed':
            raise ValidationError({'report_type': "Expected 'summary' or 'detailed'."})

        rows = services.detailed_report(start_date, end_date)
        if request.query_params.get('export') == 'csv':
            data = [[
                r['invoice_number'], r['patient'], r['total_amount'], r['total_paid'], r['balance'],
                r['status'], 'yes' if r['is_overdue'] else 'no', r['created_at'].date(),
            ] for r in rows]
            return self.export_csv(f"billing_report_{start_date}_{end_date}", DETAILED_HEADERS, data)

        return Response({
            'report_type': 'detailed',
            'start_date': str(start_date),
            'end_date': str(end_date),
            'details': rows,
        })


class PatientBillingHistoryView(BaseReportView):
    capabilities = {'GET': 'billing.history'}

    def get(self, request, patient_id):
        if role_of(request.user) == PATIENT:
            patient = Patient.objects.filter(pk=patient_id, user=request.user, is_deleted=False).first()
            if patient is None:
                raise AccessDeniedError("Access denied")
        else:
            patient = Patient.objects.filter(pk=patient_id, is_deleted=False).first()
            if patient is None:
                raise NotFoundError("Patient not found")

        history = services.patient_billing_history(patient)
        return Response({
            'patient': PatientSummarySerializer(history['patient']).data,
            'invoices': InvoiceListSerializer(history['invoices'], many=True).data,
            'totals': history['totals'],
        })
