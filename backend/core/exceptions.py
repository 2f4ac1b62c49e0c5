"""Project-wide DRF exception handler"""
import logging

from django.core.exceptions import PermissionDenied
from django.http import Http404
from rest_framework import exceptions
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


def _error_code(exc):
    if isinstance(exc, Http404):
        return 'not_found'
    if isinstance(exc, PermissionDenied):
        return 'permission_denied'
    if isinstance(exc, exceptions.ValidationError):
        return 'validation_error'
    if isinstance(exc, exceptions.APIException):
        codes = exc.get_codes()
        if isinstance(codes, str):
            return codes
        return exc.default_code
    return 'error'


def api_exception_handler(exc, context):
    """
    Render every API error with a stable machine-checkable ``code``.

    Exceptions may expose an ``extra`` dict which is merged into the body
    (e.g. the item and available quantity of an insufficient stock error).
    """
    response = exception_handler(exc, context)
    if response is None:
        return None

    data = response.data
    if not isinstance(data, dict):
        data = {'detail': data}
    data.setdefault('code', _error_code(exc))

    extra = getattr(exc, 'extra', None)
    if extra:
        for key, value in extra.items():
            data.setdefault(key, value)

    if response.status_code >= 500:
        view = context.get('view')
        logger.error(f"Server error in {view.__class__.__name__ if view else 'unknown view'}: {exc}")

    response.data = data
    return response
