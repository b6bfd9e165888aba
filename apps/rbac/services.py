"""
RBAC and Authentication services.

Implements:
- MembershipService: adding, inviting, removing members, role changes,
  default tenant selection
- TenantRepairService: the audited path for moving a resource between tenants
- AuthService: JWT issuing and validation, password login
"""
import logging
from typing import Optional, Dict, Any
from datetime import datetime, timedelta, timezone as dt_timezone

from django.conf import settings
from django.db import transaction
from django.utils import timezone
import jwt

from apps.core.exceptions import (
    CapacityExceededError,
    ForbiddenError,
    LastOwnerError,
    MembershipExistsError,
    NotFoundError,
    ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.core.storage import TenantScopedRepository, get_entity_model, storage_call
from apps.rbac.audit import AuditRecorder
from apps.rbac.models import Membership, Role, User, role_at_least
from apps.rbac.policy import AccessPolicy, as_uuid

logger = logging.getLogger(__name__)


def _coerce_role(role):
    try:
        return Role(role)
    except ValueError:
        raise ValidationError(
            f"Invalid role: {role}",
            {'role': role, 'allowed': list(Role.values)}
        )


def _deny_escalation(actor_id, tenant_id, action, granted_role):
    SecurityLogger.log_permission_denied(
        user_id=actor_id,
        tenant_id=tenant_id,
        action=action,
        reason='role_escalation',
        required_role=str(granted_role),
    )
    raise ForbiddenError('role_escalation')


class MembershipService:
    """
    Service for tenant membership management.

    Every mutation runs in a transaction and emits an audit entry. Owner
    checks are evaluated under row locks so a tenant can never be left
    without an active owner.
    """

    @classmethod
    @transaction.atomic
    def add_member(cls, tenant_id, user_id, role, invited_by, status=Membership.STATUS_ACTIVE) -> Membership:
        """
        Add a user to a tenant, or invite them.

        Args:
            tenant_id: Tenant to add the user to
            user_id: User being added
            role: Role to grant
            invited_by: Acting user; must be owner/admin and at least the granted role
            status: 'active' to add directly, 'invited' to send an invitation

        Returns:
            Membership

        Raises:
            ForbiddenError: Inviter lacks admin rights or grants a higher role
            CapacityExceededError: Tenant has no free seat
            MembershipExistsError: User already active or invited
            NotFoundError: Tenant or user does not exist
        """
        from apps.tenants.models import Tenant

        role = _coerce_role(role)
        if status not in (Membership.STATUS_ACTIVE, Membership.STATUS_INVITED):
            raise ValidationError(f"Invalid membership status: {status}", {'status': status})

        scope = AccessPolicy.authorize(invited_by, 'invite', tenant_id, required_role=Role.ADMIN)
        if not role_at_least(scope.role, role):
            _deny_escalation(scope.user_id, scope.tenant_id, 'invite', role)

        # Lock the tenant row so concurrent invites see each other's seats
        tenant = Tenant.objects.select_for_update().get(id=scope.tenant_id)

        user = User.objects.filter(id=as_uuid(user_id), is_active=True).first()
        if user is None:
            raise NotFoundError('User not found', {'user_id': str(user_id)})

        existing = Membership.objects.select_for_update().filter(tenant=tenant, user=user).first()
        if existing is not None and existing.status != Membership.STATUS_REMOVED:
            raise MembershipExistsError(
                'User is already a member of this tenant',
                {'status': existing.status}
            )

        seats = Membership.objects.seat_count(tenant.id)
        if seats >= tenant.max_users:
            logger.info(
                "Member limit reached",
                extra={'tenant_id': str(tenant.id), 'max_users': tenant.max_users, 'current': seats},
            )
            raise CapacityExceededError(
                'Tenant has reached its member limit',
                {'limit': 'max_users', 'max_users': tenant.max_users, 'current': seats}
            )

        membership = existing or Membership(tenant=tenant, user=user)
        membership.role = role
        membership.status = status
        membership.invited_by_id = scope.user_id
        membership.is_default = False
        membership.removed_at = None
        membership.joined_at = timezone.now() if status == Membership.STATUS_ACTIVE else None
        membership.save()

        AuditRecorder.record(
            tenant_id=tenant.id,
            actor_user_id=scope.user_id,
            action='membership.invited' if status == Membership.STATUS_INVITED else 'membership.added',
            entity_type='membership',
            entity_id=membership.id,
            metadata={
                'user_id': str(user.id),
                'role': role.value,
                'reactivated': existing is not None,
            },
        )

        logger.info(
            f"Member {status}: user {user.id} as {role.value}",
            extra={'tenant_id': str(tenant.id)},
        )
        return membership

    @classmethod
    @transaction.atomic
    def accept_invitation(cls, tenant_id, user) -> Membership:
        """Turn the user's pending invitation into an active membership."""
        membership = Membership.objects.select_for_update().filter(
            tenant_id=as_uuid(tenant_id),
            user_id=user.id,
            status=Membership.STATUS_INVITED,
        ).first()
        if membership is None:
            raise NotFoundError('Invitation not found', {'tenant_id': str(tenant_id)})

        membership.activate()
        membership.save(update_fields=['status', 'joined_at', 'removed_at', 'updated_at'])

        AuditRecorder.record(
            tenant_id=membership.tenant_id,
            actor_user_id=user.id,
            action='membership.accepted',
            entity_type='membership',
            entity_id=membership.id,
            metadata={'role': membership.role},
        )
        return membership

    @classmethod
    @transaction.atomic
    def set_default_tenant(cls, user_id, tenant_id) -> Membership:
        """
        Make tenant_id the user's default tenant.

        Idempotent. The user's membership rows are locked, every other
        default is cleared, then the target is set.

        Raises:
            ForbiddenError: No active membership in the tenant
        """
        user_id = as_uuid(user_id)
        target_tenant = as_uuid(tenant_id)
        memberships = list(Membership.objects.select_for_update().filter(user_id=user_id).order_by('id'))

        target = next(
            (m for m in memberships if m.tenant_id == target_tenant and m.status == Membership.STATUS_ACTIVE),
            None,
        )
        if target is None:
            SecurityLogger.log_permission_denied(user_id, tenant_id, 'set_default', 'no_membership')
            raise ForbiddenError('no_membership')

        others = [m.id for m in memberships if m.is_default and m.id != target.id]
        if others:
            Membership.objects.filter(id__in=others).update(is_default=False, updated_at=timezone.now())

        if not target.is_default:
            target.is_default = True
            target.save(update_fields=['is_default', 'updated_at'])
            AuditRecorder.record(
                tenant_id=target.tenant_id,
                actor_user_id=user_id,
                action='membership.default_set',
                entity_type='membership',
                entity_id=target.id,
            )
        return target

    @classmethod
    @transaction.atomic
    def remove_member(cls, tenant_id, user_id, acting_user) -> Membership:
        """
        Remove a member (or withdraw an invitation).

        Members may remove themselves. Otherwise the acting user must be
        owner/admin with a role at least as high as the target's.

        Raises:
            ForbiddenError: Acting user may not remove the target
            NotFoundError: No active or invited membership
            LastOwnerError: Target is the tenant's last active owner
        """
        self_removal = as_uuid(user_id) == acting_user.id
        scope = cls._authorize_locked(
            acting_user, 'remove_member', tenant_id,
            required_role=None if self_removal else Role.ADMIN,
        )
        target = cls._lock_membership(scope.tenant_id, user_id, include_invited=True)

        if not self_removal and not role_at_least(scope.role, target.role):
            _deny_escalation(scope.user_id, scope.tenant_id, 'remove_member', target.role)

        if target.role == Role.OWNER and target.status == Membership.STATUS_ACTIVE:
            cls._ensure_another_owner(target)

        previous_status = target.status
        target.status = Membership.STATUS_REMOVED
        target.is_default = False
        target.removed_at = timezone.now()
        target.save(update_fields=['status', 'is_default', 'removed_at', 'updated_at'])

        AuditRecorder.record(
            tenant_id=target.tenant_id,
            actor_user_id=acting_user.id,
            action='membership.removed',
            entity_type='membership',
            entity_id=target.id,
            metadata={
                'user_id': str(target.user_id),
                'role': target.role,
                'previous_status': previous_status,
                'self_removal': self_removal,
            },
        )
        return target

    @classmethod
    @transaction.atomic
    def change_role(cls, tenant_id, user_id, new_role, acting_user) -> Membership:
        """
        Change a member's role.

        The acting user must be owner/admin and rank at least as high as
        both the current and the new role. Demoting the last owner fails.
        """
        new_role = _coerce_role(new_role)
        scope = cls._authorize_locked(acting_user, 'change_role', tenant_id, required_role=Role.ADMIN)
        target = cls._lock_membership(scope.tenant_id, user_id)

        if not (role_at_least(scope.role, target.role) and role_at_least(scope.role, new_role)):
            _deny_escalation(scope.user_id, scope.tenant_id, 'change_role', new_role)

        if target.role == new_role:
            return target

        if target.role == Role.OWNER:
            cls._ensure_another_owner(target)

        previous_role = target.role
        target.role = new_role
        target.save(update_fields=['role', 'updated_at'])

        AuditRecorder.record(
            tenant_id=target.tenant_id,
            actor_user_id=acting_user.id,
            action='membership.role_changed',
            entity_type='membership',
            entity_id=target.id,
            metadata={'user_id': str(target.user_id), 'from': previous_role, 'to': new_role.value},
        )
        return target

    @classmethod
    def list_tenants_for_user(cls, user_id):
        """Tenants of the user's active memberships, default first, then join order."""
        memberships = Membership.objects.for_user(as_uuid(user_id)).order_by('-is_default', 'joined_at', 'created_at')
        return [membership.tenant for membership in memberships]

    @classmethod
    def list_members(cls, scope):
        """Active and invited memberships of the scoped tenant."""
        return (
            Membership.objects.filter(tenant_id=scope.tenant_id)
            .exclude(status=Membership.STATUS_REMOVED)
            .select_related('user')
            .order_by('joined_at', 'created_at')
        )

    @classmethod
    def _authorize_locked(cls, acting_user, action, tenant_id, required_role=None):
        """
        Authorize, then take the tenant row lock and authorize again.

        The lock is only taken once the actor's membership is confirmed.
        The second check sees role changes committed while waiting for it.
        """
        scope = AccessPolicy.authorize(acting_user, action, tenant_id, required_role=required_role)
        cls._lock_tenant(scope.tenant_id)
        return AccessPolicy.authorize(acting_user, action, scope.tenant_id, required_role=required_role)

    @staticmethod
    def _lock_tenant(tenant_id):
        """Serialize membership mutations of one tenant on its row lock."""
        from apps.tenants.models import Tenant

        return Tenant.objects.select_for_update().get(id=tenant_id)

    @staticmethod
    def _lock_membership(tenant_id, user_id, include_invited=False):
        statuses = [Membership.STATUS_ACTIVE]
        if include_invited:
            statuses.append(Membership.STATUS_INVITED)
        membership = Membership.objects.select_for_update().filter(
            tenant_id=as_uuid(tenant_id),
            user_id=as_uuid(user_id),
            status__in=statuses,
        ).first()
        if membership is None:
            raise NotFoundError('Member not found', {'user_id': str(user_id)})
        return membership

    @staticmethod
    def _ensure_another_owner(target):
        """Raise LastOwnerError unless another active owner remains. Locks owner rows."""
        owners = list(
            Membership.objects.select_for_update().filter(
                tenant_id=target.tenant_id,
                role=Role.OWNER,
                status=Membership.STATUS_ACTIVE,
            ).order_by('id').values_list('id', flat=True)
        )
        if not any(owner_id != target.id for owner_id in owners):
            raise LastOwnerError(
                'A tenant must keep at least one owner',
                {'tenant_id': str(target.tenant_id)}
            )


class TenantRepairService:
    """
    Governed path for correcting the tenant of a misfiled resource.

    Requires owner rights in both tenants and records the move in the audit
    trail of each.
    """

    @classmethod
    def reassign_resource_tenant(cls, entity_type, resource_id, from_tenant_id, to_tenant_id, acting_admin):
        """
        Move a resource (and its child rows) to another tenant.

        Args:
            entity_type: Registered entity type ('project', ...)
            resource_id: Resource to move
            from_tenant_id: Tenant the resource currently belongs to
            to_tenant_id: Destination tenant
            acting_admin: User with owner role in both tenants

        Returns:
            The moved resource

        Raises:
            ForbiddenError: Not owner in both tenants
            NotFoundError: Resource is not in from_tenant_id
            ValidationError: Same tenant, or entity cannot be moved on its own
        """
        if as_uuid(from_tenant_id) == as_uuid(to_tenant_id):
            raise ValidationError('Source and destination tenants must differ')

        model = get_entity_model(entity_type)
        if not getattr(model, 'reassignable', True):
            raise ValidationError(
                f"{entity_type} rows move together with their parent",
                {'entity_type': entity_type}
            )

        from_scope = AccessPolicy.authorize(acting_admin, 'reassign', from_tenant_id, required_role=Role.OWNER)
        to_scope = AccessPolicy.authorize(acting_admin, 'reassign', to_tenant_id, required_role=Role.OWNER)
        repository = TenantScopedRepository.for_entity(entity_type)

        with storage_call(to_scope.tenant_id, bypass_rls=True):
            resource = repository.get(from_scope, resource_id, for_update=True)
            changes = {}

            if Membership.objects.get_active(to_scope.tenant_id, resource.created_by_id) is None:
                changes['created_by'] = {
                    'from': str(resource.created_by_id),
                    'to': str(acting_admin.id),
                }
                resource.created_by_id = acting_admin.id

            resource.tenant_id = to_scope.tenant_id
            resource.save()
            changes.update(resource.on_tenant_reassigned(from_scope.tenant_id, to_scope.tenant_id, acting_admin))

            metadata = {
                'from_tenant_id': str(from_scope.tenant_id),
                'to_tenant_id': str(to_scope.tenant_id),
                'changes': changes,
            }
            for tenant_id, direction in ((from_scope.tenant_id, 'out'), (to_scope.tenant_id, 'in')):
                AuditRecorder.record(
                    tenant_id=tenant_id,
                    actor_user_id=acting_admin.id,
                    action='resource.tenant_reassigned',
                    entity_type=entity_type,
                    entity_id=resource.id,
                    metadata={**metadata, 'direction': direction},
                )

        logger.warning(
            f"Resource reassigned: {entity_type} {resource.id}",
            extra={
                'tenant_id': str(to_scope.tenant_id),
                'from_tenant_id': str(from_scope.tenant_id),
                'actor_user_id': str(acting_admin.id),
            },
        )
        return resource


class AuthService:
    """
    Service for authentication operations.

    Only the user_id claim of a token is trusted; tenant and role always
    come from the membership table.
    """

    @classmethod
    def generate_jwt(cls, user: User) -> str:
        """
        Generate JWT token for a user.

        Args:
            user: User instance

        Returns:
            JWT token string
        """
        now = datetime.now(dt_timezone.utc)
        payload = {
            'user_id': str(user.id),
            'exp': now + timedelta(hours=settings.JWT_EXPIRATION_HOURS),
            'iat': now,
        }
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """Decode a token; None if it is expired, malformed, or badly signed."""
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM],
                options={'require': ['exp', 'user_id']},
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def get_user_from_jwt(cls, token: str) -> Optional[User]:
        payload = cls.validate_jwt(token)
        if not payload:
            return None

        user_id = as_uuid(payload.get('user_id'))
        if user_id is None:
            return None
        return User.objects.filter(id=user_id, is_active=True).first()

    @classmethod
    def login(cls, email: str, password: str) -> Optional[Dict[str, Any]]:
        """
        Authenticate user and return JWT token.

        Returns:
            Dict with user and token, or None if authentication failed
        """
        user = User.objects.active().filter(email=User.objects.normalize_email(email)).first()
        if user is None or not user.check_password(password):
            return None

        user.last_login_at = timezone.now()
        user.save(update_fields=['last_login_at', 'updated_at'])
        return {
            'user': user,
            'token': cls.generate_jwt(user),
        }
