import logging

from rest_framework import exceptions, status
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ValidationError(exceptions.ValidationError):
    """Malformed input; nothing was written."""


class NotFoundError(exceptions.NotFound):
    pass


class AccessDeniedError(exceptions.PermissionDenied):
    pass


class StateConflictError(exceptions.APIException):
    """The entity's current state forbids the operation; it was left unchanged."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Operation not allowed in the current state.'
    default_code = 'state_conflict'


class OverpaymentError(StateConflictError):
    default_detail = 'Payment amount exceeds invoice balance.'
    default_code = 'overpayment'


class PricingLookupFailure(Exception):
    """Catalog miss or timeout. Always recovered with a fallback price."""


def _message(detail):
    if isinstance(detail, list) and detail:
        return _message(detail[0])
    if isinstance(detail, dict) and detail:
        key, value = next(iter(detail.items()))
        msg = _message(value)
        return msg if key in ('detail', 'non_field_errors', 'error') else f"{key}: {msg}"
    return str(detail)


def api_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        logger.error("Unhandled error in %s", context.get('view').__class__.__name__, exc_info=exc)
        return None
    if isinstance(response.data, dict):
        response.data.setdefault('error', _message(response.data))
    else:
        response.data = {'error': _message(response.data), 'detail': response.data}
    return response
