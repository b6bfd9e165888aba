"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Authentication (login)
- Users and memberships
- Member management requests
- Audit entries
- Resource tenant reassignment
"""
from rest_framework import serializers

from apps.core.storage import registered_entity_types
from apps.rbac.models import AuditEntry, Membership, Role, User


# ===== AUTHENTICATION SERIALIZERS =====

class LoginSerializer(serializers.Serializer):
    """Serializer for user login."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )


# ===== USER AND MEMBERSHIP SERIALIZERS =====

class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model."""

    full_name = serializers.CharField(source='get_full_name', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'email', 'first_name', 'last_name', 'full_name', 'is_active', 'created_at']
        read_only_fields = fields


class TenantSummarySerializer(serializers.Serializer):
    """Minimal tenant info embedded in membership responses."""

    id = serializers.UUIDField()
    name = serializers.CharField()
    slug = serializers.CharField()
    status = serializers.CharField()


class MembershipSerializer(serializers.ModelSerializer):
    """A membership as seen by its own user (workspace switcher)."""

    tenant = TenantSummarySerializer(read_only=True)

    class Meta:
        model = Membership
        fields = ['id', 'tenant', 'role', 'is_default', 'status', 'joined_at']
        read_only_fields = fields


class MemberSerializer(serializers.ModelSerializer):
    """A membership as seen by other members of the tenant."""

    user = UserSerializer(read_only=True)
    invited_by_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Membership
        fields = ['id', 'user', 'role', 'status', 'is_default', 'invited_by_id', 'joined_at', 'created_at']
        read_only_fields = fields


class AddMemberSerializer(serializers.Serializer):
    """Request body for adding or inviting a member. Either user_id or email is required."""

    user_id = serializers.UUIDField(required=False)
    email = serializers.EmailField(required=False)
    role = serializers.ChoiceField(choices=Role.choices, default=Role.MEMBER)
    invite = serializers.BooleanField(
        default=False,
        help_text="Create a pending invitation instead of an active membership"
    )

    def validate(self, attrs):
        if not attrs.get('user_id') and not attrs.get('email'):
            raise serializers.ValidationError('Either user_id or email is required')
        return attrs


class ChangeRoleSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=Role.choices)


class TenantSelectionSerializer(serializers.Serializer):
    """Body for endpoints that act on one of the caller's tenants."""

    tenant_id = serializers.UUIDField()


class TenantContextSerializer(serializers.Serializer):
    """The resolved tenant context of a request."""

    state = serializers.CharField()
    tenant = TenantSummarySerializer(read_only=True)
    role = serializers.CharField()
    user_id = serializers.UUIDField()


# ===== AUDIT SERIALIZERS =====

class AuditEntrySerializer(serializers.ModelSerializer):
    """Serializer for AuditEntry model (read-only)."""

    class Meta:
        model = AuditEntry
        fields = ['id', 'tenant_id', 'actor_user_id', 'action', 'entity_type', 'entity_id', 'timestamp', 'metadata']
        read_only_fields = fields


class AuditEntryFilterSerializer(serializers.Serializer):
    """Query parameters accepted by the audit entry list."""

    action = serializers.CharField(required=False, allow_blank=True, max_length=100)
    entity_type = serializers.CharField(required=False, allow_blank=True, max_length=50)
    entity_id = serializers.CharField(required=False, allow_blank=True, max_length=64)
    actor_user_id = serializers.UUIDField(required=False)


# ===== TENANT REPAIR SERIALIZERS =====

class ReassignResourceSerializer(serializers.Serializer):
    """Request body for moving a misfiled resource to another tenant."""

    entity_type = serializers.CharField(max_length=50)
    resource_id = serializers.UUIDField()
    from_tenant_id = serializers.UUIDField()
    to_tenant_id = serializers.UUIDField()

    def validate_entity_type(self, value):
        if value not in registered_entity_types():
            raise serializers.ValidationError(f"Unknown entity type: {value}")
        return value

    def validate(self, attrs):
        if attrs['from_tenant_id'] == attrs['to_tenant_id']:
            raise serializers.ValidationError('Source and destination tenants must differ')
        return attrs
