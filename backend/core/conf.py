from django.conf import settings

DEFAULTS = {
    'DEFAULT_PRICES': {
        'CONSULTATION': '50.00',
        'LABORATORY': '30.00',
        'RADIOLOGY': '100.00',
        'PHARMACY': '25.00',
        'OTHER': '0.00',
    },
    'DEFAULT_REIMBURSEMENT_RATE': '80',
    'INVOICE_DUE_DAYS': 30,
    'CATALOG_BACKEND': 'catalog.backends.DatabaseCatalog',
    'CATALOG_URL': '',
    'CATALOG_LOOKUP_TIMEOUT': 2.0,
}


def medbill_setting(name):
    """Read a key from ``settings.MEDBILL``, falling back to DEFAULTS."""
    configured = getattr(settings, 'MEDBILL', {})
    if name in configured:
        return configured[name]
    return DEFAULTS[name]
