"""
Tenant management service.

Handles tenant lifecycle operations including:
- Tenant creation with an owner membership
- Tenant lookup
- Settings updates by owners and admins
- Suspension and reactivation
"""
import logging
import uuid
from typing import Optional

from django.db import IntegrityError, transaction
from django.utils import timezone
from django.utils.text import slugify

from apps.core.exceptions import DuplicateSlugError, NotFoundError, ValidationError
from apps.rbac.audit import AuditRecorder
from apps.rbac.models import Membership, Role, User
from apps.rbac.policy import AccessPolicy, as_uuid
from apps.tenants.models import Tenant

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {'name', 'settings'}


class TenantService:
    """
    Service for tenant lifecycle management.

    Provides methods for:
    - Creating tenants with the creator as owner
    - Fetching tenants
    - Updating tenant name and settings
    - Suspending and reactivating tenants
    """

    @staticmethod
    def _unique_slug(name: str) -> str:
        slug = slugify(name or '')[:90]
        if not slug and slugify(name or '', allow_unicode=True):
            # Names written only in non-Latin scripts
            slug = f"tenant-{uuid.uuid4().hex[:8]}"
        if not slug:
            raise ValidationError(
                'Tenant name must contain letters or digits',
                {'name': name}
            )

        base_slug = slug
        counter = 1
        while Tenant.objects.filter(slug=slug).exists():
            slug = f"{base_slug}-{counter}"
            counter += 1
        return slug

    @classmethod
    @transaction.atomic
    def create_tenant(cls, name: str, owner: User, request=None) -> Tenant:
        """
        Create a tenant with owner as its first member.

        The owner membership becomes the user's default if they have none.

        Args:
            name: Organization name
            owner: User who will own the tenant

        Returns:
            Tenant instance

        Raises:
            ValidationError: Name produces an empty slug
            DuplicateSlugError: Slug taken by a concurrent insert
        """
        name = (name or '').strip()
        slug = cls._unique_slug(name)

        try:
            with transaction.atomic():
                tenant = Tenant.objects.create(name=name, slug=slug)
        except IntegrityError as exc:
            logger.warning(f"Slug collision on insert: {slug}")
            raise DuplicateSlugError(
                'Tenant slug already in use',
                {'slug': slug}
            ) from exc

        has_default = Membership.objects.filter(user=owner, is_default=True).exists()
        membership = Membership.objects.create(
            tenant=tenant,
            user=owner,
            role=Role.OWNER,
            status=Membership.STATUS_ACTIVE,
            is_default=not has_default,
            joined_at=timezone.now(),
        )

        AuditRecorder.record(
            tenant_id=tenant.id,
            actor_user_id=owner.id,
            action='tenant.created',
            entity_type='tenant',
            entity_id=tenant.id,
            metadata={'name': tenant.name, 'slug': tenant.slug, 'membership_id': str(membership.id)},
            request=request,
        )

        logger.info(
            f"Tenant created: {tenant.slug}",
            extra={'tenant_id': str(tenant.id), 'owner_id': str(owner.id)},
        )
        return tenant

    @classmethod
    def get_tenant(cls, tenant_id) -> Tenant:
        tenant = None
        tenant_uuid = as_uuid(tenant_id)
        if tenant_uuid is not None:
            tenant = Tenant.objects.filter(id=tenant_uuid).first()
        if tenant is None:
            raise NotFoundError('Tenant not found', {'tenant_id': str(tenant_id)})
        return tenant

    @classmethod
    @transaction.atomic
    def update_tenant_settings(cls, tenant_id, patch: dict, acting_user: User, request=None) -> Tenant:
        """
        Update tenant name and/or merge settings keys.

        A settings key set to None is removed.

        Args:
            tenant_id: Tenant to update
            patch: {'name': ..., 'settings': {...}}
            acting_user: Must be owner or admin of the tenant

        Returns:
            Updated Tenant

        Raises:
            ForbiddenError: Acting user is not owner/admin
            ValidationError: Patch contains unknown fields
        """
        scope = AccessPolicy.authorize(acting_user, 'update_settings', tenant_id, required_role=Role.ADMIN)

        unknown = sorted(set(patch or {}) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError('Only name and settings can be updated', {'fields': unknown})

        tenant = Tenant.objects.select_for_update().get(id=scope.tenant_id)
        diff = {}

        if 'name' in patch:
            new_name = (patch['name'] or '').strip()
            if not new_name:
                raise ValidationError('Tenant name cannot be empty', {'name': patch['name']})
            if new_name != tenant.name:
                diff['name'] = {'from': tenant.name, 'to': new_name}
                tenant.name = new_name

        if 'settings' in patch:
            incoming = patch['settings']
            if not isinstance(incoming, dict):
                raise ValidationError('settings must be an object', {'settings': incoming})
            merged = dict(tenant.settings or {})
            settings_diff = {}
            for key, value in incoming.items():
                before = merged.get(key)
                if value is None:
                    if key in merged:
                        merged.pop(key)
                        settings_diff[key] = {'from': before, 'to': None}
                elif before != value:
                    merged[key] = value
                    settings_diff[key] = {'from': before, 'to': value}
            if settings_diff:
                diff['settings'] = settings_diff
                tenant.settings = merged

        if diff:
            tenant.save()
            AuditRecorder.record(
                tenant_id=tenant.id,
                actor_user_id=scope.user_id,
                action='tenant.settings_updated',
                entity_type='tenant',
                entity_id=tenant.id,
                metadata={'diff': diff},
                request=request,
            )
        return tenant

    @classmethod
    def suspend_tenant(cls, tenant_id, reason: Optional[str] = None, actor_user_id=None) -> Tenant:
        return cls._set_status(tenant_id, Tenant.STATUS_SUSPENDED, reason, actor_user_id)

    @classmethod
    def reactivate_tenant(cls, tenant_id, reason: Optional[str] = None, actor_user_id=None) -> Tenant:
        return cls._set_status(tenant_id, Tenant.STATUS_ACTIVE, reason, actor_user_id)

    @classmethod
    @transaction.atomic
    def _set_status(cls, tenant_id, status, reason, actor_user_id):
        tenant = cls.get_tenant(tenant_id)
        tenant = Tenant.objects.select_for_update().get(id=tenant.id)
        if tenant.status == status:
            return tenant

        previous = tenant.status
        tenant.status = status
        tenant.save(update_fields=['status', 'updated_at'])

        AuditRecorder.record(
            tenant_id=tenant.id,
            actor_user_id=actor_user_id,
            action='tenant.suspended' if status == Tenant.STATUS_SUSPENDED else 'tenant.reactivated',
            entity_type='tenant',
            entity_id=tenant.id,
            metadata={'from': previous, 'to': status, 'reason': reason},
        )
        logger.warning(
            f"Tenant status changed: {previous} -> {status}",
            extra={'tenant_id': str(tenant.id), 'reason': reason},
        )
        return tenant
