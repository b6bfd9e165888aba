"""
Access policy evaluator.

AccessPolicy.authorize is the single decision point for tenant-scoped
operations. It reads memberships and tenant status only; resource tables
are never touched here. An allowed decision yields a TenantScope, which is
the only accepted key for the tenant-scoped repositories.
"""
import logging
import uuid
from dataclasses import dataclass

from apps.core.exceptions import ForbiddenError
from apps.core.logging import SecurityLogger
from apps.rbac.models import Membership, Role, role_at_least

logger = logging.getLogger(__name__)

# Actions still permitted while a tenant is suspended.
READ_ONLY_ACTIONS = frozenset({'read', 'export'})

DENY_NO_MEMBERSHIP = 'no_membership'
DENY_CROSS_TENANT = 'cross_tenant'
DENY_TENANT_SUSPENDED = 'tenant_suspended'
DENY_INSUFFICIENT_ROLE = 'insufficient_role'


def as_uuid(value):
    """Coerce value to a UUID, or None when it is not one."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


@dataclass(frozen=True)
class TenantScope:
    """Proof that user_id may perform action inside tenant_id."""

    tenant_id: uuid.UUID
    user_id: uuid.UUID
    role: str
    action: str

    def as_filter(self):
        """Predicate every scoped query is restricted by."""
        return {'tenant_id': self.tenant_id}

    def allows_role(self, required_role):
        return role_at_least(self.role, required_role)


class AccessPolicy:
    """Evaluates whether a user may perform an action in a tenant."""

    @classmethod
    def authorize(cls, user, action, tenant_id, resource_tenant_id=None, required_role=None):
        """
        Authorize an action and return the TenantScope to run it with.

        Checks run in a fixed order: active membership, resource tenant match,
        tenant suspension (only read and export pass), then role.

        Args:
            user: User instance or user id
            action: Action name ('read', 'create', 'update', ...)
            tenant_id: Tenant the action runs in
            resource_tenant_id: Tenant of an existing row being touched, if any
            required_role: Minimum Role for the action, if any

        Returns:
            TenantScope

        Raises:
            ForbiddenError: With a generic message; the reason is only logged.
        """
        user_id = as_uuid(getattr(user, 'id', user))
        tenant_uuid = as_uuid(tenant_id)

        membership = None
        if user_id is not None and tenant_uuid is not None:
            membership = Membership.objects.get_active(tenant_uuid, user_id)
        if membership is None:
            cls._deny(user_id, tenant_id, action, DENY_NO_MEMBERSHIP, required_role)

        if resource_tenant_id is not None and as_uuid(resource_tenant_id) != tenant_uuid:
            SecurityLogger.log_cross_tenant_attempt(user_id, tenant_uuid, resource_tenant_id, action)
            cls._deny(user_id, tenant_uuid, action, DENY_CROSS_TENANT, required_role)

        if membership.tenant.is_suspended() and action not in READ_ONLY_ACTIONS:
            cls._deny(user_id, tenant_uuid, action, DENY_TENANT_SUSPENDED, required_role)

        if required_role is not None and not role_at_least(membership.role, required_role):
            cls._deny(user_id, tenant_uuid, action, DENY_INSUFFICIENT_ROLE, required_role)

        return TenantScope(
            tenant_id=membership.tenant_id,
            user_id=membership.user_id,
            role=membership.role,
            action=action,
        )

    @classmethod
    def is_allowed(cls, user, action, tenant_id, resource_tenant_id=None, required_role=None):
        """Boolean form of authorize; denials are still logged."""
        try:
            cls.authorize(user, action, tenant_id, resource_tenant_id, required_role)
        except ForbiddenError:
            return False
        return True

    @staticmethod
    def _deny(user_id, tenant_id, action, reason, required_role):
        SecurityLogger.log_permission_denied(
            user_id=user_id,
            tenant_id=tenant_id,
            action=action,
            reason=reason,
            required_role=str(required_role) if required_role else None,
        )
        raise ForbiddenError(reason)


__all__ = ['AccessPolicy', 'TenantScope', 'Role', 'READ_ONLY_ACTIONS', 'as_uuid']
