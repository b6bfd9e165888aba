"""
Tenant API URLs.
"""
from django.urls import path

from apps.tenants.views import TenantDetailView, TenantListView, TenantSettingsView

app_name = 'tenants'

urlpatterns = [
    path('tenants', TenantListView.as_view(), name='tenant-list'),
    path('tenants/<uuid:tenant_id>', TenantDetailView.as_view(), name='tenant-detail'),
    path('tenants/<uuid:tenant_id>/settings', TenantSettingsView.as_view(), name='tenant-settings'),
]
