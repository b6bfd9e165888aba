"""
Serializers for tenant endpoints.
"""
from rest_framework import serializers

from apps.tenants.models import Tenant


class TenantSerializer(serializers.ModelSerializer):
    """Full tenant representation for members of the tenant."""

    class Meta:
        model = Tenant
        fields = [
            'id', 'name', 'slug', 'status', 'subscription_tier',
            'max_users', 'max_projects', 'settings', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class TenantListSerializer(serializers.Serializer):
    """
    One entry of the caller's tenant list.

    Built from a Membership so the caller's role and default flag come
    along with the tenant.
    """

    id = serializers.UUIDField(source='tenant.id')
    name = serializers.CharField(source='tenant.name')
    slug = serializers.CharField(source='tenant.slug')
    status = serializers.CharField(source='tenant.status')
    subscription_tier = serializers.CharField(source='tenant.subscription_tier')
    role = serializers.CharField()
    is_default = serializers.BooleanField()


class TenantCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('Tenant name cannot be empty')
        return value


class TenantSettingsUpdateSerializer(serializers.Serializer):
    """
    Patch for tenant name and settings.

    Settings keys are merged into the stored settings; a key sent as null
    is removed.
    """

    name = serializers.CharField(max_length=255, required=False)
    settings = serializers.DictField(required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError('Provide name or settings')
        return attrs
