"""
Core models for Siteline.
Provides BaseModel with UUID primary keys and timestamp fields, and
TenantScopedModel for every row that belongs to a tenant.
"""
import uuid
from django.db import models


class BaseModel(models.Model):
    """
    Abstract base model with UUID primary key and timestamps.

    All models in Siteline should inherit from this base model to ensure
    consistent behavior across the platform.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when the record was created"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        db_index=True,
        help_text="Timestamp when the record was last updated"
    )

    class Meta:
        abstract = True
        ordering = ['-created_at']


class TenantScopedQuerySet(models.QuerySet):
    """QuerySet helpers for tenant-owned rows."""

    def for_tenant(self, tenant_id):
        """Restrict rows to a single tenant."""
        return self.filter(tenant_id=tenant_id)


class TenantScopedModel(BaseModel):
    """
    Abstract base for every tenant-owned resource (projects, tasks, ...).

    The tenant foreign key is mandatory and indexed. PROTECT keeps a tenant
    from being hard-deleted while it still owns rows; only the purge_tenant
    command removes children first.
    """
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.PROTECT,
        related_name='+',
        db_index=True,
        help_text="Tenant that owns this row"
    )
    created_by = models.ForeignKey(
        'rbac.User',
        on_delete=models.PROTECT,
        related_name='+',
        help_text="User who created this row"
    )

    objects = TenantScopedQuerySet.as_manager()

    class Meta:
        abstract = True
        ordering = ['-created_at']

    # Rows that can be moved on their own by the tenant repair path.
    reassignable = True

    # Fields a patch may never touch through the repository.
    PROTECTED_FIELDS = ('id', 'tenant', 'tenant_id', 'created_by', 'created_by_id', 'created_at')

    def on_tenant_reassigned(self, from_tenant_id, to_tenant_id, acting_user):
        """
        Hook for moving dependent rows along with this one.

        Called inside the reassignment transaction after tenant_id has been
        changed. Subclasses override this when they own child rows and return
        a dict describing what else changed.
        """
        return {}
