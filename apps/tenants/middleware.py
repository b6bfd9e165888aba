"""
Request middleware: request IDs and tenant context.

TenantContextMiddleware authenticates the bearer token and resolves the
active tenant for the request. The resolved context is attached to the
request object only; it is rebuilt from the membership table on every
request.
"""
import logging
import uuid
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from apps.core.exceptions import AmbiguousTenantError, ForbiddenError
from apps.core.logging import SecurityLogger
from apps.core.sentry_utils import set_tenant_context, set_user_context

logger = logging.getLogger(__name__)


def get_client_ip(request):
    forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


class TenantContextMiddleware(MiddlewareMixin):
    """
    Authenticate the caller and resolve the active tenant.

    This middleware:
    1. Reads the Authorization: Bearer <jwt> header and loads the user
    2. Reads the optional X-TENANT-ID header
    3. Resolves the tenant context through TenantContextResolver
    4. Attaches request.user, request.tenant_context, request.tenant and
       request.membership

    Public endpoints (health checks, schema, admin) bypass authentication.
    Account-level endpoints only require a valid token.
    """

    PUBLIC_PATHS = [
        '/v1/health',
        '/v1/auth/login',
        '/schema',
        '/admin/',
    ]

    # Endpoints that act on the user's account rather than one tenant
    ACCOUNT_PATHS = [
        '/v1/tenants',
        '/v1/memberships/',
        '/v1/resources/',
    ]

    def process_request(self, request):
        request.tenant_context = None
        request.tenant = None
        request.membership = None

        if not request.path.startswith('/v1/') or self._matches(request.path, self.PUBLIC_PATHS):
            return None

        user = self._authenticate(request)
        if user is None:
            return self._error_response('INVALID_TOKEN', 'Authentication credentials are missing or invalid', status=401)
        request.user = user
        set_user_context(user)

        if self._matches(request.path, self.ACCOUNT_PATHS):
            return None

        # Imported here to avoid loading rbac models at middleware import
        from apps.rbac.context import TenantContextResolver

        requested_tenant_id = request.headers.get('X-TENANT-ID')
        try:
            context = TenantContextResolver.resolve(user, requested_tenant_id)
        except AmbiguousTenantError as exc:
            return self._error_response(exc.code, exc.message, status=409, details=exc.details)
        except ForbiddenError as exc:
            logger.info(
                "Tenant context denied",
                extra={'request_id': getattr(request, 'request_id', None), 'reason': exc.reason},
            )
            return self._error_response(exc.code, exc.message, status=403)

        request.tenant_context = context
        request.tenant = context.tenant
        request.membership = context.membership
        set_tenant_context(context.tenant)
        set_user_context(user, context.membership)

        logger.debug(
            "Tenant context set",
            extra={'request_id': getattr(request, 'request_id', None), 'tenant_id': str(context.tenant_id)},
        )
        return None

    def _authenticate(self, request):
        from apps.rbac.services import AuthService

        header = request.headers.get('Authorization', '')
        scheme, _, token = header.partition(' ')
        if scheme.lower() != 'bearer' or not token.strip():
            SecurityLogger.log_invalid_token('missing_token', get_client_ip(request), request.path)
            return None

        user = AuthService.get_user_from_jwt(token.strip())
        if user is None:
            SecurityLogger.log_invalid_token('invalid_token', get_client_ip(request), request.path)
        return user

    @staticmethod
    def _matches(path, prefixes):
        return any(path.startswith(prefix) for prefix in prefixes)

    def _error_response(self, code, message, status=400, details=None):
        """Generate standardized error response."""
        error_data = {
            'error': {
                'code': code,
                'message': message,
            }
        }
        if details:
            error_data['error']['details'] = details
        return JsonResponse(error_data, status=status)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject unique request ID for tracing.

    The client may supply X-Request-ID; otherwise one is generated. The ID is
    echoed on every response.
    """

    def process_request(self, request):
        if not hasattr(request, 'request_id'):
            request.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        return None

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        return response
