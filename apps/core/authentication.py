"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import BaseAuthentication


class MiddlewareAuthentication(BaseAuthentication):
    """
    DRF authentication class that uses the user set by TenantContextMiddleware.

    The middleware validates the bearer token and resolves the tenant context;
    this class hands the resulting user to DRF so views see request.user.
    """

    def authenticate(self, request):
        django_request = request._request
        user = getattr(django_request, 'user', None)

        if user is not None and user.is_authenticated:
            return (user, None)
        return None

    def authenticate_header(self, request):
        # Makes DRF answer 401 rather than 403 for unauthenticated requests
        return 'Bearer'
