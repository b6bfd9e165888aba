"""
Django admin configuration for tenants app.
"""
from django.contrib import admin
from .models import SubscriptionEvent, Tenant


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'status', 'subscription_tier', 'max_users', 'max_projects', 'created_at']
    list_filter = ['status', 'subscription_tier']
    search_fields = ['name', 'slug']
    # Tier and limits change only through SubscriptionService
    readonly_fields = ['subscription_tier', 'max_users', 'max_projects', 'created_at', 'updated_at']

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(SubscriptionEvent)
class SubscriptionEventAdmin(admin.ModelAdmin):
    list_display = ['provider_event_id', 'tenant', 'tier', 'status', 'received_at']
    list_filter = ['tier', 'status']
    search_fields = ['provider_event_id', 'tenant__slug']
    readonly_fields = ['provider_event_id', 'tenant', 'tier', 'limits', 'status', 'received_at']
