"""
A small aggregation interface used by the report builders.

Reports describe *what* to aggregate (filters, grouping keys, measures);
``Aggregation`` translates that to the storage engine. Only the Django ORM is
implemented, but report code never touches ORM aggregate syntax directly.

Measures are declared with the helpers below::

    Aggregation(Invoice.objects.all()).group_by('status', count=count(), billed=total('total_amount'))
"""
from collections import namedtuple

from django.db.models import Avg, Count, Sum

from core.money import ZERO, money

Measure = namedtuple('Measure', ['kind', 'field'])


def count(field='pk'):
    return Measure('count', field)


def total(field):
    return Measure('sum', field)


def average(field):
    return Measure('avg', field)


def _compile(measures):
    compiled = {}
    for name, measure in measures.items():
        if measure.kind == 'count':
            compiled[name] = Count(measure.field)
        elif measure.kind == 'sum':
            compiled[name] = Sum(measure.field)
        elif measure.kind == 'avg':
            compiled[name] = Avg(measure.field)
        else:
            raise ValueError(f"Unknown measure {measure.kind!r}")
    return compiled


def _normalize(row, measures):
    for name, measure in measures.items():
        value = row.get(name)
        if measure.kind == 'count':
            row[name] = value or 0
        else:
            row[name] = money(value) if value is not None else ZERO
    return row


class Aggregation:

    def __init__(self, source):
        self.source = source

    def filter(self, **conditions):
        """Narrow the rows; ``None`` values are ignored so optional filters can be passed through."""
        active = {k: v for k, v in conditions.items() if v is not None}
        return Aggregation(self.source.filter(**active)) if active else self

    def exclude(self, **conditions):
        return Aggregation(self.source.exclude(**conditions))

    def totals(self, **measures):
        row = self.source.aggregate(**_compile(measures))
        return _normalize(row, measures)

    def group_by(self, key, order_by=None, **measures):
        """
        One row per distinct ``key``. ``key`` is a field name or an
        ``(alias, expression)`` pair for computed keys such as month buckets.
        """
        alias, qs = self._grouped(key, measures)
        return self._rows(qs.order_by(*(order_by or [alias])), alias, measures)

    def top(self, key, limit, by, **measures):
        """The ``limit`` groups with the largest ``by`` measure, ties broken by key."""
        alias, qs = self._grouped(key, measures)
        return self._rows(qs.order_by(f'-{by}', alias)[:limit], alias, measures)

    def _grouped(self, key, measures):
        if isinstance(key, tuple):
            alias, expression = key
            qs = self.source.annotate(**{alias: expression}).values(alias)
        else:
            alias = key
            qs = self.source.values(key)
        return alias, qs.annotate(**_compile(measures))

    @staticmethod
    def _rows(qs, alias, measures):
        rows = []
        for row in qs:
            row = _normalize(dict(row), measures)
            row['key'] = row.pop(alias)
            rows.append(row)
        return rows
