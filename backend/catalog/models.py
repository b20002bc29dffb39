from django.db import models
from django.core.validators import MinValueValidator
from core.models import BaseModel


class ServiceCatalogEntry(BaseModel):
    DEPARTMENT_CHOICES = (
        ('CONSULTATION', 'Consultation'),
        ('LABORATORY', 'Laboratory'),
        ('RADIOLOGY', 'Radiology'),
        ('PHARMACY', 'Pharmacy'),
        ('OTHER', 'Other'),
    )

    service_code = models.CharField(max_length=30, unique=True)
    name = models.CharField(max_length=255)
    department = models.CharField(max_length=20, choices=DEPARTMENT_CHOICES)
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(0)])
    is_active = models.BooleanField(default=True)

    class Meta:
        indexes = [models.Index(fields=['department', 'is_active'])]

    def __str__(self):
        return f"{self.service_code} {self.name} ({self.price})"
