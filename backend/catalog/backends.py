import logging
from collections import namedtuple

import requests
from django.db.models import Q

from core.exceptions import PricingLookupFailure
from core.money import money, to_decimal
from .models import ServiceCatalogEntry

logger = logging.getLogger(__name__)

CatalogPrice = namedtuple('CatalogPrice', ['price', 'code', 'name'])


class DatabaseCatalog:
    """Looks prices up in the local ServiceCatalogEntry table."""

    def __init__(self, timeout=None):
        self.timeout = timeout

    def lookup(self, department, name_or_code=None):
        qs = ServiceCatalogEntry.objects.filter(department=department, is_active=True, is_deleted=False)
        if not name_or_code:
            entry = qs.order_by('service_code').first()
        else:
            term = name_or_code.strip()
            entry = (
                qs.filter(Q(service_code__iexact=term) | Q(name__iexact=term)).order_by('service_code').first()
                or qs.filter(name__icontains=term).order_by('name').first()
            )
        if entry is None:
            return None
        return CatalogPrice(price=money(entry.price), code=entry.service_code, name=entry.name)


class HttpCatalog:
    """
    Remote catalog service. Expects ``GET <url>/prices/?department=&q=`` to
    answer 200 with ``{"price": "12.50", "code": "...", "name": "..."}`` or 404.
    """

    def __init__(self, base_url, timeout=2.0):
        if not base_url:
            raise ValueError("HttpCatalog needs MEDBILL['CATALOG_URL']")
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def lookup(self, department, name_or_code=None):
        params = {'department': department}
        if name_or_code:
            params['q'] = name_or_code
        try:
            response = requests.get(f"{self.base_url}/prices/", params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise PricingLookupFailure(f"Catalog request failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise PricingLookupFailure(f"Catalog answered HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise PricingLookupFailure("Catalog returned invalid JSON") from e

        price = to_decimal(data.get('price'))
        if price is None or price < 0:
            raise PricingLookupFailure(f"Catalog returned unusable price {data.get('price')!r}")
        return CatalogPrice(price=money(price), code=data.get('code') or '', name=data.get('name') or name_or_code or '')
