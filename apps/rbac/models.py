"""
RBAC models for multi-tenant access control.

Implements:
- Global User identity (can belong to several tenants)
- Membership linking a user to a tenant with a single role
- AuditEntry, the append-only activity trail
"""
import logging
import uuid
from django.db import models
from django.db.models import Q
from django.contrib.auth.hashers import make_password, check_password
from django.utils import timezone
from apps.core.models import BaseModel

logger = logging.getLogger(__name__)


class Role(models.TextChoices):
    """Tenant roles, strictly ordered owner > admin > member."""
    OWNER = 'owner', 'Owner'
    ADMIN = 'admin', 'Admin'
    MEMBER = 'member', 'Member'


ROLE_RANK = {
    Role.MEMBER.value: 1,
    Role.ADMIN.value: 2,
    Role.OWNER.value: 3,
}


def role_at_least(role, required):
    """True when role is equal to or above required."""
    return ROLE_RANK.get(str(role), 0) >= ROLE_RANK[str(required)]


class UserManager(models.Manager):
    """
    Manager for User queries.

    Compatible with Django's authentication system and admin interface.
    """

    def active(self):
        return self.filter(is_active=True)

    def by_email(self, email):
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, password=None, **extra_fields):
        """Create a new user with hashed password."""
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields['is_superuser'] = True
        return self.create_user(email, password, **extra_fields)

    @staticmethod
    def normalize_email(email):
        """Lowercase the domain part of the email address."""
        email = (email or '').strip()
        try:
            email_name, domain_part = email.rsplit('@', 1)
        except ValueError:
            return email
        return email_name + '@' + domain_part.lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    Global user identity. Authentication happens at the User level,
    authorization at the Membership level.

    Users are deactivated, never deleted.
    """

    email = models.EmailField(
        unique=True,
        help_text="User email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        blank=True,
        help_text="Hashed password"
    )
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Platform administrator (Django admin only)"
    )
    last_login_at = models.DateTimeField(null=True, blank=True)

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']

    def __str__(self):
        return self.email

    @property
    def password(self):
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    def get_username(self):
        return self.email

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        return self.is_superuser

    def has_perm(self, perm, obj=None):
        return self.is_superuser

    def has_perms(self, perm_list, obj=None):
        return self.is_superuser

    def has_module_perms(self, app_label):
        return self.is_superuser

    def natural_key(self):
        return (self.email,)


class MembershipManager(models.Manager):
    """Manager for Membership queries."""

    def active(self):
        return self.filter(status=Membership.STATUS_ACTIVE)

    def for_tenant(self, tenant_id):
        """Active memberships of a tenant."""
        return self.active().filter(tenant_id=tenant_id)

    def for_user(self, user_id):
        """Active memberships of a user in tenants that still exist."""
        return self.active().filter(user_id=user_id).select_related('tenant')

    def get_active(self, tenant_id, user_id):
        """The user's active membership in the tenant, or None."""
        return self.active().filter(tenant_id=tenant_id, user_id=user_id).select_related('tenant').first()

    def seat_count(self, tenant_id):
        """Memberships counted against max_users (active and invited)."""
        return self.filter(
            tenant_id=tenant_id,
            status__in=[Membership.STATUS_ACTIVE, Membership.STATUS_INVITED],
        ).count()


class Membership(BaseModel):
    """
    Association between a User and a Tenant carrying exactly one role.

    A user has at most one default membership; the partial unique
    constraint below backs the transactional service that maintains it.
    Removing a member changes status and keeps the row.
    """

    STATUS_ACTIVE = 'active'
    STATUS_INVITED = 'invited'
    STATUS_REMOVED = 'removed'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_INVITED, 'Invited'),
        (STATUS_REMOVED, 'Removed'),
    ]

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.PROTECT,
        related_name='memberships',
        db_index=True,
        help_text="Tenant this membership belongs to"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='memberships',
        db_index=True,
        help_text="Member"
    )
    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.MEMBER,
        help_text="Role within the tenant"
    )
    is_default = models.BooleanField(
        default=False,
        help_text="Whether this is the user's default tenant"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True,
        help_text="Membership status"
    )
    invited_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='invitations_sent',
        help_text="User who added or invited this member"
    )
    joined_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the membership became active"
    )
    removed_at = models.DateTimeField(null=True, blank=True)

    objects = MembershipManager()

    class Meta:
        db_table = 'memberships'
        ordering = ['joined_at', 'created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'tenant'],
                name='uniq_membership_user_tenant',
            ),
            models.UniqueConstraint(
                fields=['user'],
                condition=Q(is_default=True),
                name='uniq_default_membership_per_user',
            ),
        ]
        indexes = [
            models.Index(fields=['tenant', 'status', 'role'], name='memberships_tenant_status_idx'),
            models.Index(fields=['user', 'status'], name='memberships_user_status_idx'),
        ]

    def __str__(self):
        return f"{self.user_id} @ {self.tenant_id} ({self.role}, {self.status})"

    def is_active(self):
        return self.status == self.STATUS_ACTIVE

    def activate(self):
        self.status = self.STATUS_ACTIVE
        self.joined_at = timezone.now()
        self.removed_at = None


class AuditEntryManager(models.Manager):
    """Manager for AuditEntry queries with tenant scoping."""

    def for_tenant(self, tenant_id):
        return self.filter(tenant_id=tenant_id)

    def for_entity(self, entity_type, entity_id):
        return self.filter(entity_type=entity_type, entity_id=str(entity_id))


class AuditEntry(models.Model):
    """
    Append-only record of a mutation.

    tenant_id and actor_user_id are plain UUIDs rather than foreign keys so
    history survives any cleanup of the rows it refers to.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant_id = models.UUIDField(db_index=True)
    actor_user_id = models.UUIDField(null=True, blank=True, db_index=True)
    action = models.CharField(max_length=100, db_index=True)
    entity_type = models.CharField(max_length=50)
    entity_id = models.CharField(max_length=64)
    timestamp = models.DateTimeField(default=timezone.now, db_index=True)
    metadata = models.JSONField(default=dict, blank=True)

    objects = AuditEntryManager()

    class Meta:
        db_table = 'audit_entries'
        ordering = ['-timestamp']
        verbose_name_plural = 'audit entries'
        indexes = [
            models.Index(fields=['tenant_id', 'timestamp'], name='audit_tenant_timestamp_idx'),
            models.Index(fields=['entity_type', 'entity_id'], name='audit_entity_idx'),
        ]

    def __str__(self):
        return f"{self.tenant_id} - {self.action} {self.entity_type}:{self.entity_id}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Audit entries are append-only")
        kwargs['force_insert'] = True
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Audit entries are append-only")
