"""
Error taxonomy and the DRF exception handler.

Services raise the exceptions below and views let them propagate;
custom_exception_handler renders them in one consistent shape.
Authorization failures are always rendered with the same generic message so
responses never reveal whether a resource exists in another tenant.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django_ratelimit.exceptions import Ratelimited

logger = logging.getLogger(__name__)

GENERIC_FORBIDDEN_MESSAGE = 'Not authorized'


class SitelineException(Exception):
    """Base exception for Siteline-specific errors."""

    status_code = 500
    code = 'INTERNAL_ERROR'

    def __init__(self, message=None, details=None):
        self.message = message or self.default_message()
        self.details = details or {}
        super().__init__(self.message)

    def default_message(self):
        return self.__class__.__doc__.strip().splitlines()[0] if self.__class__.__doc__ else self.code

    def public_payload(self):
        """Body rendered to API clients."""
        payload = {'code': self.code, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class NotFoundError(SitelineException):
    """Resource not found."""
    status_code = 404
    code = 'NOT_FOUND'


class ForbiddenError(SitelineException):
    """
    Membership or role check failed (includes cross-tenant access).

    The reason is kept for logging only; the public message is generic.
    """
    status_code = 403
    code = 'NOT_AUTHORIZED'

    def __init__(self, reason='forbidden', details=None):
        self.reason = reason
        super().__init__(GENERIC_FORBIDDEN_MESSAGE, details)

    def public_payload(self):
        return {'code': self.code, 'message': GENERIC_FORBIDDEN_MESSAGE}


class AmbiguousTenantError(SitelineException):
    """Tenant selection required."""
    status_code = 409
    code = 'TENANT_SELECTION_REQUIRED'

    def __init__(self, candidates=None):
        self.candidates = list(candidates or [])
        super().__init__(
            'Select a tenant to continue',
            {'tenants': self.candidates}
        )


class CapacityExceededError(SitelineException):
    """Tenant limit reached."""
    status_code = 409
    code = 'CAPACITY_EXCEEDED'


class LastOwnerError(SitelineException):
    """A tenant must keep at least one owner."""
    status_code = 409
    code = 'LAST_OWNER'


class DuplicateSlugError(SitelineException):
    """Tenant slug already in use."""
    status_code = 409
    code = 'DUPLICATE_SLUG'


class MembershipExistsError(SitelineException):
    """User is already a member of this tenant."""
    status_code = 409
    code = 'MEMBERSHIP_EXISTS'


class StorageTimeoutError(SitelineException):
    """Storage did not respond in time."""
    status_code = 503
    code = 'STORAGE_TIMEOUT'


class ValidationError(SitelineException):
    """Invalid input."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class UnscopedQueryError(SitelineException):
    """Data access attempted without a tenant scope."""
    status_code = 500
    code = 'INTERNAL_ERROR'

    def public_payload(self):
        return {'code': self.code, 'message': 'An unexpected error occurred'}


class AuditWriteError(SitelineException):
    """Audit entry could not be persisted."""
    code = 'AUDIT_WRITE_FAILED'


def _error_response(payload, status_code, request_id):
    body = {'error': payload}
    if request_id:
        body['request_id'] = request_id
    return Response(body, status=status_code)


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, Ratelimited):
        response = _error_response(
            {'code': 'RATE_LIMIT_EXCEEDED', 'message': 'Rate limit exceeded. Please try again later.'},
            status.HTTP_429_TOO_MANY_REQUESTS,
            request_id,
        )
        response['Retry-After'] = '60'
        return response

    if isinstance(exc, SitelineException):
        log_method = logger.error if exc.status_code >= 500 else logger.info
        log_method(
            f"API error: {exc.__class__.__name__}",
            extra={
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
                'reason': getattr(exc, 'reason', None),
            },
            exc_info=exc.status_code >= 500,
        )
        return _error_response(exc.public_payload(), exc.status_code, request_id)

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=True
        )
        return _error_response(
            {'code': 'INTERNAL_ERROR', 'message': 'An unexpected error occurred'},
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id,
        )

    if response.status_code == status.HTTP_403_FORBIDDEN:
        response.data = {'error': {'code': 'NOT_AUTHORIZED', 'message': GENERIC_FORBIDDEN_MESSAGE}}
    elif isinstance(response.data, dict) and 'error' not in response.data:
        response.data = {
            'error': {
                'code': 'VALIDATION_ERROR' if response.status_code == 400 else 'ERROR',
                'message': 'Invalid request data' if response.status_code == 400 else 'Request failed',
                'details': response.data,
            }
        }

    # Add request_id to all error responses
    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
