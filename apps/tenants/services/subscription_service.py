"""
Subscription service: the single write path for tier and limit data.

Called by the billing-provider integration. Every call carries the
provider's event id; a replayed event changes nothing.
"""
import logging
from typing import Optional

from django.db import IntegrityError, transaction

from apps.core.exceptions import ValidationError
from apps.rbac.audit import AuditRecorder
from apps.tenants.models import SubscriptionEvent, Tenant
from apps.tenants.services.tenant_service import TenantService

logger = logging.getLogger(__name__)

LIMIT_FIELDS = ('max_users', 'max_projects')
VALID_TIERS = {choice for choice, _ in Tenant.TIER_CHOICES}
VALID_STATUSES = {choice for choice, _ in Tenant.STATUS_CHOICES}


class SubscriptionService:
    """Applies billing-provider subscription changes to tenants."""

    @staticmethod
    def _validate(tier, limits, status):
        if tier not in VALID_TIERS:
            raise ValidationError(f"Invalid subscription tier: {tier}", {'tier': tier})
        if status is not None and status not in VALID_STATUSES:
            raise ValidationError(f"Invalid tenant status: {status}", {'status': status})

        cleaned = {}
        for key, value in (limits or {}).items():
            if key not in LIMIT_FIELDS:
                raise ValidationError(f"Unknown limit: {key}", {'limit': key})
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValidationError(f"{key} must be a positive integer", {key: value})
            cleaned[key] = value
        return cleaned

    @classmethod
    def update_subscription(cls, tenant_id, tier: str, limits: dict, event_id: str,
                            status: Optional[str] = None) -> Tenant:
        """
        Apply a subscription event to a tenant.

        Args:
            tenant_id: Tenant the event is for
            tier: New subscription tier
            limits: {'max_users': int, 'max_projects': int} (either optional)
            event_id: Provider event id, used for idempotency
            status: Optional 'suspended' / 'active' to lapse or restore the tenant

        Returns:
            The tenant after the event (unchanged for a replayed event)
        """
        if not event_id:
            raise ValidationError('event_id is required')
        limits = cls._validate(tier, limits, status)
        tenant = TenantService.get_tenant(tenant_id)

        try:
            with transaction.atomic():
                SubscriptionEvent.objects.create(
                    provider_event_id=event_id,
                    tenant=tenant,
                    tier=tier,
                    limits=limits,
                    status=status,
                )
                tenant = cls._apply(tenant, tier, limits, event_id)
                if status == Tenant.STATUS_SUSPENDED:
                    tenant = TenantService.suspend_tenant(tenant.id, reason=f"subscription event {event_id}")
                elif status == Tenant.STATUS_ACTIVE:
                    tenant = TenantService.reactivate_tenant(tenant.id, reason=f"subscription event {event_id}")
        except IntegrityError:
            logger.info(
                f"Subscription event already processed: {event_id}",
                extra={'tenant_id': str(tenant.id)},
            )
            return TenantService.get_tenant(tenant.id)

        return tenant

    @staticmethod
    def _apply(tenant, tier, limits, event_id):
        tenant = Tenant.objects.select_for_update().get(id=tenant.id)
        before = {
            'subscription_tier': tenant.subscription_tier,
            'max_users': tenant.max_users,
            'max_projects': tenant.max_projects,
        }

        tenant.subscription_tier = tier
        for key, value in limits.items():
            setattr(tenant, key, value)
        tenant.save(update_fields=['subscription_tier', 'max_users', 'max_projects', 'updated_at'])

        after = {
            'subscription_tier': tenant.subscription_tier,
            'max_users': tenant.max_users,
            'max_projects': tenant.max_projects,
        }
        AuditRecorder.record(
            tenant_id=tenant.id,
            actor_user_id=None,
            action='tenant.subscription_updated',
            entity_type='tenant',
            entity_id=tenant.id,
            metadata={'event_id': event_id, 'before': before, 'after': after},
        )
        logger.info(
            f"Subscription updated to {tier}",
            extra={'tenant_id': str(tenant.id), 'event_id': event_id},
        )
        return tenant
