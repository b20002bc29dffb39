"""
Price resolution used by invoice building.

``resolve_price`` never raises: any backend failure is logged and reported
as a miss, and callers fall back to ``fallback_price``.
"""
import logging

from django.db import DatabaseError, transaction
from django.utils.module_loading import import_string

from core.conf import medbill_setting
from core.exceptions import PricingLookupFailure
from core.money import money
from .backends import CatalogPrice, HttpCatalog

logger = logging.getLogger(__name__)

__all__ = ['CatalogPrice', 'get_catalog', 'resolve_price', 'fallback_price']


def get_catalog():
    backend_cls = import_string(medbill_setting('CATALOG_BACKEND'))
    timeout = medbill_setting('CATALOG_LOOKUP_TIMEOUT')
    if issubclass(backend_cls, HttpCatalog):
        return backend_cls(medbill_setting('CATALOG_URL'), timeout=timeout)
    return backend_cls(timeout=timeout)


def resolve_price(department, name_or_code=None, catalog=None):
    catalog = catalog or get_catalog()
    try:
        # Savepoint so a failed query does not poison the caller's transaction.
        with transaction.atomic():
            result = catalog.lookup(department, name_or_code)
    except (PricingLookupFailure, DatabaseError) as e:
        logger.warning("Catalog lookup failed for %s/%s, using fallback: %s", department, name_or_code, e)
        return None

    if result is None:
        logger.info("No catalog entry for %s/%s", department, name_or_code)
    return result


def fallback_price(department):
    prices = medbill_setting('DEFAULT_PRICES')
    return money(prices.get(department, prices.get('OTHER', '0.00')))
