"""
Tenant models for multi-tenant isolation.

A Tenant is the organization that owns every row of business data.
SubscriptionEvent is the idempotency ledger for billing-provider updates.
"""
from django.conf import settings
from django.db import models
from apps.core.models import BaseModel


def default_max_users():
    return settings.DEFAULT_MAX_USERS


def default_max_projects():
    return settings.DEFAULT_MAX_PROJECTS


class TenantManager(models.Manager):
    """Manager for tenant queries."""

    def active(self):
        """Return only active tenants."""
        return self.filter(status=Tenant.STATUS_ACTIVE)

    def by_slug(self, slug):
        return self.filter(slug=slug).first()


class Tenant(BaseModel):
    """
    Organization that owns projects, tasks, and memberships.

    Tenants are soft-disabled (suspended) when their subscription lapses and
    are never hard-deleted while child rows exist.
    """

    STATUS_ACTIVE = 'active'
    STATUS_SUSPENDED = 'suspended'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_SUSPENDED, 'Suspended'),
    ]

    TIER_STARTER = 'starter'
    TIER_PROFESSIONAL = 'professional'
    TIER_ENTERPRISE = 'enterprise'
    TIER_CHOICES = [
        (TIER_STARTER, 'Starter'),
        (TIER_PROFESSIONAL, 'Professional'),
        (TIER_ENTERPRISE, 'Enterprise'),
    ]

    name = models.CharField(
        max_length=255,
        help_text="Organization display name"
    )
    slug = models.SlugField(
        max_length=100,
        unique=True,
        help_text="URL-safe unique identifier"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True,
        help_text="Current tenant status"
    )
    subscription_tier = models.CharField(
        max_length=20,
        choices=TIER_CHOICES,
        default=TIER_STARTER,
        help_text="Billing tier, written only by the subscription service"
    )
    max_users = models.PositiveIntegerField(
        default=default_max_users,
        help_text="Maximum active and invited memberships"
    )
    max_projects = models.PositiveIntegerField(
        default=default_max_projects,
        help_text="Maximum projects"
    )
    settings = models.JSONField(
        default=dict,
        blank=True,
        help_text="Free-form tenant settings"
    )

    objects = TenantManager()

    class Meta:
        db_table = 'tenants'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='tenants_status_created_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.slug})"

    def is_active(self):
        return self.status == self.STATUS_ACTIVE

    def is_suspended(self):
        return self.status == self.STATUS_SUSPENDED


class SubscriptionEventManager(models.Manager):
    """Manager for subscription event queries."""

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def already_processed(self, provider_event_id):
        return self.filter(provider_event_id=provider_event_id).exists()


class SubscriptionEvent(BaseModel):
    """
    A billing-provider event applied to a tenant.

    provider_event_id is unique, so replaying the same event is detected
    and ignored.
    """

    provider_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Event identifier from the billing provider"
    )
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name='subscription_events',
        db_index=True,
        help_text="Tenant the event applies to"
    )
    tier = models.CharField(
        max_length=20,
        choices=Tenant.TIER_CHOICES,
        help_text="Tier after the event"
    )
    limits = models.JSONField(
        default=dict,
        blank=True,
        help_text="Limits applied by the event (max_users, max_projects)"
    )
    status = models.CharField(
        max_length=20,
        choices=Tenant.STATUS_CHOICES,
        null=True,
        blank=True,
        help_text="Tenant status requested by the event, if any"
    )
    received_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the event was applied"
    )

    objects = SubscriptionEventManager()

    class Meta:
        db_table = 'subscription_events'
        ordering = ['-received_at']

    def __str__(self):
        return f"{self.tenant_id} - {self.provider_event_id}"
