from django.contrib.auth.models import AbstractUser
from django.db import models
from core.models import BaseModel


class User(AbstractUser, BaseModel):
    ROLE_CHOICES = (
        ('ADMIN', 'Admin'),
        ('BILLING_STAFF', 'Billing Staff'),
        ('DOCTOR', 'Doctor'),
        ('PATIENT', 'Patient'),
        ('RECEPTION', 'Reception'),
    )
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='RECEPTION')

    def __str__(self):
        return self.username

    @property
    def display_name(self):
        return self.get_full_name() or self.username
