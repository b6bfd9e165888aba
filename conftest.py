"""
Pytest configuration and fixtures.
"""
import pytest


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def make_user(db):
    """Factory for users with unique emails."""
    from apps.rbac.models import User
    counter = {'n': 0}

    def _make_user(email=None, password='pass-Word-123', **extra):
        counter['n'] += 1
        email = email or f"user{counter['n']}@example.com"
        return User.objects.create_user(email=email, password=password, **extra)

    return _make_user


@pytest.fixture
def make_membership(db):
    """Create a membership row directly, bypassing the service rules."""
    from django.utils import timezone
    from apps.rbac.models import Membership, Role

    def _make_membership(tenant, user, role=Role.MEMBER, status=Membership.STATUS_ACTIVE, is_default=False):
        return Membership.objects.create(
            tenant=tenant,
            user=user,
            role=role,
            status=status,
            is_default=is_default,
            joined_at=timezone.now() if status == Membership.STATUS_ACTIVE else None,
        )

    return _make_membership


@pytest.fixture
def owner(make_user):
    return make_user(email='owner@example.com', first_name='Olive', last_name='Owner')


@pytest.fixture
def tenant(owner):
    """Tenant created through the service, owned by `owner`."""
    from apps.tenants.services import TenantService
    return TenantService.create_tenant('Acme Builders', owner)


@pytest.fixture
def other_owner(make_user):
    return make_user(email='other-owner@example.com')


@pytest.fixture
def other_tenant(other_owner):
    """A second tenant for isolation tests."""
    from apps.tenants.services import TenantService
    return TenantService.create_tenant('Beta Construction', other_owner)


@pytest.fixture
def admin_user(make_user, make_membership, tenant):
    from apps.rbac.models import Role
    user = make_user(email='admin@example.com')
    make_membership(tenant, user, role=Role.ADMIN)
    return user


@pytest.fixture
def member_user(make_user, make_membership, tenant):
    from apps.rbac.models import Role
    user = make_user(email='member@example.com')
    make_membership(tenant, user, role=Role.MEMBER)
    return user


@pytest.fixture
def scope_for():
    """Authorize a user in a tenant and return the TenantScope."""
    from apps.rbac.policy import AccessPolicy

    def _scope_for(user, tenant, action='read', required_role=None):
        return AccessPolicy.authorize(user, action, tenant.id, required_role=required_role)

    return _scope_for


@pytest.fixture
def auth_client(api_client):
    """
    Return a function that authenticates the API client as a user.

    Usage:
        client = auth_client(user, tenant)
    """
    from apps.rbac.services import AuthService

    def _auth_client(user, tenant=None):
        token = AuthService.generate_jwt(user)
        headers = {'HTTP_AUTHORIZATION': f'Bearer {token}'}
        if tenant is not None:
            headers['HTTP_X_TENANT_ID'] = str(tenant.id)
        api_client.credentials(**headers)
        return api_client

    return _auth_client
