"""
Django admin configuration for RBAC app.

Audit entries are shown read-only; the admin never edits or deletes them.
"""
from django.contrib import admin
from .models import AuditEntry, Membership, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ['email', 'first_name', 'last_name', 'is_active', 'is_superuser', 'created_at']
    list_filter = ['is_active', 'is_superuser', 'created_at']
    search_fields = ['email', 'first_name', 'last_name']
    ordering = ['-created_at']
    exclude = ['password_hash']
    readonly_fields = ['created_at', 'updated_at', 'last_login_at']

    def has_delete_permission(self, request, obj=None):
        # Users are deactivated, not deleted
        return False


@admin.register(Membership)
class MembershipAdmin(admin.ModelAdmin):
    list_display = ['user', 'tenant', 'role', 'status', 'is_default', 'joined_at']
    list_filter = ['role', 'status', 'is_default']
    search_fields = ['user__email', 'tenant__name', 'tenant__slug']
    readonly_fields = ['created_at', 'updated_at', 'joined_at', 'removed_at']
    raw_id_fields = ['user', 'tenant', 'invited_by']

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(AuditEntry)
class AuditEntryAdmin(admin.ModelAdmin):
    list_display = ['timestamp', 'tenant_id', 'actor_user_id', 'action', 'entity_type', 'entity_id']
    list_filter = ['action', 'entity_type']
    search_fields = ['tenant_id', 'entity_id', 'action']
    ordering = ['-timestamp']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
