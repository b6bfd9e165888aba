"""
Tenant API views.

Handles:
- Listing the caller's tenants
- Creating a tenant (the caller becomes owner)
- Tenant details
- Tenant name and settings updates
"""
import logging

from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.rbac.models import Membership
from apps.rbac.policy import AccessPolicy
from apps.tenants.serializers import (
    TenantCreateSerializer,
    TenantListSerializer,
    TenantSerializer,
    TenantSettingsUpdateSerializer,
)
from apps.tenants.services import TenantService

logger = logging.getLogger(__name__)


@method_decorator(ratelimit(key='user_or_ip', rate='10/h', method='POST', block=True), name='post')
class TenantListView(APIView):
    """
    GET /v1/tenants - List tenants where the caller has an active membership
    POST /v1/tenants - Create a tenant with the caller as owner

    No tenant context is needed; both act on the caller's account.
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="List user's tenants",
        responses={200: TenantListSerializer(many=True)},
        tags=['Tenant Management']
    )
    def get(self, request):
        memberships = Membership.objects.for_user(request.user.id).order_by('-is_default', 'joined_at', 'created_at')
        return Response(TenantListSerializer(memberships, many=True).data)

    @extend_schema(
        summary="Create tenant",
        request=TenantCreateSerializer,
        responses={201: TenantSerializer},
        tags=['Tenant Management']
    )
    def post(self, request):
        serializer = TenantCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        tenant = TenantService.create_tenant(serializer.validated_data['name'], request.user, request=request)
        return Response(TenantSerializer(tenant).data, status=status.HTTP_201_CREATED)


class TenantDetailView(APIView):
    """
    GET /v1/tenants/{tenant_id}

    Any active member may read the tenant. Non-members get 403 whether or
    not the tenant exists.
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(summary="Get tenant", responses={200: TenantSerializer}, tags=['Tenant Management'])
    def get(self, request, tenant_id):
        scope = AccessPolicy.authorize(request.user, 'read', tenant_id)
        return Response(TenantSerializer(TenantService.get_tenant(scope.tenant_id)).data)


class TenantSettingsView(APIView):
    """PATCH /v1/tenants/{tenant_id}/settings (owner/admin)"""
    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Update tenant settings",
        request=TenantSettingsUpdateSerializer,
        responses={200: TenantSerializer},
        tags=['Tenant Management']
    )
    def patch(self, request, tenant_id):
        serializer = TenantSettingsUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        tenant = TenantService.update_tenant_settings(
            tenant_id, serializer.validated_data, request.user, request=request
        )
        return Response(TenantSerializer(tenant).data)
