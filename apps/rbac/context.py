"""
Tenant context resolution.

Determines the active tenant for a request from the user's live
memberships. The result is returned to the caller and attached to the
request object only; nothing is kept in globals or thread-locals, so a
membership change takes effect on the very next request.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from apps.core.exceptions import AmbiguousTenantError, ForbiddenError
from apps.core.logging import SecurityLogger
from apps.rbac.models import Membership
from apps.rbac.policy import as_uuid

logger = logging.getLogger(__name__)

UNRESOLVED = 'unresolved'
RESOLVED = 'resolved'
AMBIGUOUS = 'ambiguous'


@dataclass
class TenantContext:
    """Outcome of tenant resolution for one request."""

    state: str = UNRESOLVED
    user_id: Optional[object] = None
    tenant: Optional[object] = None
    membership: Optional[object] = None
    candidates: list = field(default_factory=list)

    @property
    def tenant_id(self):
        return self.tenant.id if self.tenant is not None else None

    @property
    def role(self):
        return self.membership.role if self.membership is not None else None

    @property
    def is_resolved(self):
        return self.state == RESOLVED


def _candidate(membership):
    return {
        'id': str(membership.tenant_id),
        'name': membership.tenant.name,
        'slug': membership.tenant.slug,
        'role': membership.role,
    }


class TenantContextResolver:
    """Chooses the active tenant for a user."""

    @classmethod
    def resolve(cls, user, requested_tenant_id=None):
        """
        Resolve the active tenant.

        Args:
            user: Authenticated User
            requested_tenant_id: Tenant explicitly selected by the client

        Returns:
            TenantContext in the RESOLVED state

        Raises:
            ForbiddenError: No memberships, or the requested tenant is not one of them
            AmbiguousTenantError: Several memberships and no default
        """
        memberships = list(Membership.objects.for_user(user.id).order_by('joined_at', 'created_at'))

        if not memberships:
            SecurityLogger.log_permission_denied(user.id, requested_tenant_id, 'resolve_context', 'no_membership')
            raise ForbiddenError('no_membership')

        if requested_tenant_id:
            requested = as_uuid(requested_tenant_id)
            for membership in memberships:
                if membership.tenant_id == requested:
                    return cls._resolved(user, membership)
            SecurityLogger.log_permission_denied(user.id, requested_tenant_id, 'resolve_context', 'no_membership')
            raise ForbiddenError('no_membership')

        if len(memberships) == 1:
            return cls._resolved(user, memberships[0])

        for membership in memberships:
            if membership.is_default:
                return cls._resolved(user, membership)

        logger.info(
            "Tenant selection required",
            extra={'user_id': str(user.id), 'candidate_count': len(memberships)},
        )
        raise AmbiguousTenantError([_candidate(membership) for membership in memberships])

    @staticmethod
    def _resolved(user, membership):
        return TenantContext(
            state=RESOLVED,
            user_id=user.id,
            tenant=membership.tenant,
            membership=membership,
        )
