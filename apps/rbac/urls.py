"""
RBAC API URLs.

Provides endpoints for:
- The caller's memberships and default tenant
- The resolved tenant context
- Member management
- Audit entry viewing
- Resource tenant reassignment
"""
from django.urls import path
from apps.rbac.views import (
    AcceptInvitationView,
    AuditEntryListView,
    DefaultTenantView,
    MemberDetailView,
    MemberListView,
    MyMembershipsView,
    ReassignResourceView,
    TenantContextView,
)

app_name = 'rbac'

urlpatterns = [
    # Account-level membership endpoints (no tenant context)
    path('memberships/me', MyMembershipsView.as_view(), name='membership-list'),
    path('memberships/default', DefaultTenantView.as_view(), name='membership-default'),
    path('memberships/accept', AcceptInvitationView.as_view(), name='membership-accept'),

    # Active tenant
    path('context', TenantContextView.as_view(), name='tenant-context'),
    path('members', MemberListView.as_view(), name='member-list'),
    path('members/<uuid:user_id>', MemberDetailView.as_view(), name='member-detail'),
    path('audit-entries', AuditEntryListView.as_view(), name='audit-entry-list'),

    # Tenant repair
    path('resources/reassign', ReassignResourceView.as_view(), name='resource-reassign'),
]
