from django.db import models
from django.conf import settings
from django.core.validators import MinValueValidator
from core.models import BaseModel
from patients.models import Patient, Visit


class LabTest(BaseModel):
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=30, blank=True)
    category = models.CharField(max_length=50, blank=True)
    # List price; the service catalog takes precedence when it has an entry.
    price = models.DecimalField(max_digits=10, decimal_places=2, default=0, validators=[MinValueValidator(0)])

    def __str__(self):
        return f"{self.name} ({self.category})"


class LabOrder(BaseModel):
    STATUS_CHOICES = (
        ('PENDING', 'Pending'),
        ('COMPLETED', 'Completed'),
        ('CANCELLED', 'Cancelled'),
    )
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='lab_orders')
    visit = models.ForeignKey(Visit, on_delete=models.SET_NULL, null=True, blank=True, related_name='lab_orders')
    ordered_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='PENDING')

    def __str__(self):
        return f"Lab order {self.id}"


class LabOrderItem(BaseModel):
    order = models.ForeignKey(LabOrder, on_delete=models.CASCADE, related_name='items')
    test = models.ForeignKey(LabTest, on_delete=models.PROTECT, related_name='order_items')

    class Meta:
        ordering = ['created_at']

    def __str__(self):
        return f"{self.test.name} on {self.order_id}"
