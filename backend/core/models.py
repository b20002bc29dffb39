import uuid
from django.db import models, transaction
from django.db.models import F


class BaseModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    is_deleted = models.BooleanField(default=False)

    class Meta:
        abstract = True


class Sequence(models.Model):
    """
    Per-year counter backing invoice and claim numbers.

    The row is locked and incremented in place, so concurrent creators
    always receive distinct values.
    """
    name = models.CharField(max_length=50)
    year = models.PositiveIntegerField()
    value = models.PositiveBigIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['name', 'year'], name='unique_sequence_per_year'),
        ]

    def __str__(self):
        return f"{self.name}/{self.year}: {self.value}"

    @classmethod
    def next_value(cls, name, year):
        with transaction.atomic():
            seq, _ = cls.objects.select_for_update().get_or_create(name=name, year=year)
            cls.objects.filter(pk=seq.pk).update(value=F('value') + 1)
            seq.refresh_from_db(fields=['value'])
            return seq.value
