"""
Email/password backend for Django admin sessions.

API clients authenticate with bearer tokens instead; see
TenantContextMiddleware.
"""
from django.contrib.auth.backends import BaseBackend

from apps.rbac.models import User


class EmailAuthBackend(BaseBackend):
    """Authenticate an active user by email address and password."""

    def authenticate(self, request, username=None, password=None, **kwargs):
        # Django admin passes the email as 'username'
        email = username or kwargs.get('email')
        if not email or not password:
            return None

        user = User.objects.by_email(email)
        if user is None:
            # Hash once anyway so unknown emails take as long as wrong passwords
            User().set_password(password)
            return None

        if user.is_active and user.check_password(password):
            return user
        return None

    def get_user(self, user_id):
        return User.objects.active().filter(pk=user_id).first()
