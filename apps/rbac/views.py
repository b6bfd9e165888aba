"""
RBAC REST API views.

Implements endpoints for:
- Login
- The caller's own memberships (list, default tenant, accept invitation)
- The resolved tenant context
- Member management (list, add, change role, remove)
- Audit entry viewing
- Resource tenant reassignment
"""
import logging

from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import NotFoundError
from apps.core.logging import SecurityLogger
from apps.core.permissions import HasTenantRole, requires_role
from apps.rbac.models import AuditEntry, Membership, Role, User
from apps.rbac.serializers import (
    AddMemberSerializer,
    AuditEntryFilterSerializer,
    AuditEntrySerializer,
    ChangeRoleSerializer,
    LoginSerializer,
    MemberSerializer,
    MembershipSerializer,
    ReassignResourceSerializer,
    TenantContextSerializer,
    TenantSelectionSerializer,
    UserSerializer,
)
from apps.rbac.services import AuthService, MembershipService, TenantRepairService
from apps.tenants.middleware import get_client_ip

logger = logging.getLogger(__name__)


def login_email_key(group, request):
    """Rate limit key for login attempts against one email address."""
    email = request.data.get('email') if hasattr(request, 'data') else None
    return (email or '').strip().lower()


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


@method_decorator(ratelimit(key='ip', rate='5/m', method='POST', block=False), name='post')
@method_decorator(ratelimit(key=login_email_key, rate='10/h', method='POST', block=False), name='post')
class LoginView(APIView):
    """
    POST /v1/auth/login

    Authenticate user and return JWT token.

    No authentication required.
    Rate limited to:
    - 5 requests per minute per IP address
    - 10 requests per hour per email address
    """
    authentication_classes = []
    permission_classes = []

    @extend_schema(
        tags=['Authentication'],
        summary='Login',
        request=LoginSerializer,
        responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT, 429: OpenApiTypes.OBJECT},
    )
    def post(self, request):
        if getattr(request, 'limited', False):
            SecurityLogger.log_rate_limit_exceeded(
                endpoint='/v1/auth/login',
                ip_address=get_client_ip(request),
                limit='5/min per IP or 10/hour per email',
            )
            retry_after = 60
            response = Response(
                {
                    'error': {
                        'code': 'RATE_LIMIT_EXCEEDED',
                        'message': 'Rate limit exceeded. Please try again later.',
                    }
                },
                status=status.HTTP_429_TOO_MANY_REQUESTS
            )
            response['Retry-After'] = str(retry_after)
            return response

        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = AuthService.login(
            email=serializer.validated_data['email'],
            password=serializer.validated_data['password']
        )
        if not result:
            SecurityLogger.log_failed_login(
                email=serializer.validated_data['email'],
                ip_address=get_client_ip(request),
                reason='invalid_credentials',
            )
            return Response(
                {'error': {'code': 'INVALID_CREDENTIALS', 'message': 'Invalid email or password'}},
                status=status.HTTP_401_UNAUTHORIZED
            )

        return Response({
            'token': result['token'],
            'user': UserSerializer(result['user']).data,
        })


class MyMembershipsView(APIView):
    """
    GET /v1/memberships/me

    List the caller's active memberships, default tenant first.
    No tenant context required.
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=['RBAC - Memberships'],
        summary='List my memberships',
        responses={200: MembershipSerializer(many=True)},
    )
    def get(self, request):
        memberships = Membership.objects.for_user(request.user.id).order_by('-is_default', 'joined_at', 'created_at')
        data = MembershipSerializer(memberships, many=True).data
        return Response({'count': len(data), 'memberships': data})


class DefaultTenantView(APIView):
    """POST /v1/memberships/default - choose the tenant used when no X-TENANT-ID is sent."""
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=['RBAC - Memberships'],
        summary='Set default tenant',
        request=TenantSelectionSerializer,
        responses={200: MembershipSerializer},
    )
    def post(self, request):
        serializer = TenantSelectionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        membership = MembershipService.set_default_tenant(request.user.id, serializer.validated_data['tenant_id'])
        return Response(MembershipSerializer(membership).data)


class AcceptInvitationView(APIView):
    """POST /v1/memberships/accept"""
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=['RBAC - Memberships'],
        summary='Accept invitation',
        request=TenantSelectionSerializer,
        responses={200: MembershipSerializer},
    )
    def post(self, request):
        serializer = TenantSelectionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        membership = MembershipService.accept_invitation(serializer.validated_data['tenant_id'], request.user)
        return Response(MembershipSerializer(membership).data)


class TenantContextView(APIView):
    """
    GET /v1/context

    Echo the tenant context resolved for this request. Clients call this
    after login to learn which tenant is active; a 409 carries the
    candidates for a tenant picker.
    """
    permission_classes = [HasTenantRole]

    @extend_schema(
        tags=['RBAC - Memberships'],
        summary='Current tenant context',
        parameters=[
            OpenApiParameter(
                name='X-TENANT-ID',
                type=OpenApiTypes.UUID,
                location=OpenApiParameter.HEADER,
                required=False,
                description='Tenant to activate',
            ),
        ],
        responses={200: TenantContextSerializer},
    )
    def get(self, request):
        context = request.tenant_context
        return Response(TenantContextSerializer({
            'state': context.state,
            'tenant': context.tenant,
            'role': context.role,
            'user_id': context.user_id,
        }).data)


@requires_role(Role.ADMIN, methods=['POST'])
@method_decorator(ratelimit(key='user_or_ip', rate='60/m', method='POST', block=True), name='post')
class MemberListView(APIView):
    """
    GET /v1/members - List members of the active tenant
    POST /v1/members - Add or invite a member (owner/admin)
    """
    permission_classes = [HasTenantRole]

    @extend_schema(
        tags=['RBAC - Members'],
        summary='List members',
        responses={200: MemberSerializer(many=True)},
    )
    def get(self, request):
        members = MembershipService.list_members(request.tenant_scope)
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(members, request, view=self)
        return paginator.get_paginated_response(MemberSerializer(page, many=True).data)

    @extend_schema(
        tags=['RBAC - Members'],
        summary='Add or invite member',
        request=AddMemberSerializer,
        responses={201: MemberSerializer},
    )
    def post(self, request):
        serializer = AddMemberSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        user_id = data.get('user_id')
        if user_id is None:
            user = User.objects.by_email(data['email'])
            if user is None:
                raise NotFoundError('User not found')
            user_id = user.id

        membership = MembershipService.add_member(
            tenant_id=request.tenant_scope.tenant_id,
            user_id=user_id,
            role=data['role'],
            invited_by=request.user,
            status=Membership.STATUS_INVITED if data['invite'] else Membership.STATUS_ACTIVE,
        )
        return Response(MemberSerializer(membership).data, status=status.HTTP_201_CREATED)


@requires_role(Role.ADMIN, methods=['PATCH'])
class MemberDetailView(APIView):
    """
    PATCH /v1/members/{user_id} - Change a member's role (owner/admin)
    DELETE /v1/members/{user_id} - Remove a member, or leave the tenant
    """
    permission_classes = [HasTenantRole]

    @extend_schema(
        tags=['RBAC - Members'],
        summary='Change member role',
        request=ChangeRoleSerializer,
        responses={200: MemberSerializer},
    )
    def patch(self, request, user_id):
        serializer = ChangeRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        membership = MembershipService.change_role(
            request.tenant_scope.tenant_id,
            user_id,
            serializer.validated_data['role'],
            acting_user=request.user,
        )
        return Response(MemberSerializer(membership).data)

    @extend_schema(tags=['RBAC - Members'], summary='Remove member', responses={204: None})
    def delete(self, request, user_id):
        MembershipService.remove_member(request.tenant_scope.tenant_id, user_id, acting_user=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


@requires_role(Role.ADMIN)
class AuditEntryListView(APIView):
    """
    GET /v1/audit-entries

    Audit trail of the active tenant, newest first. Owner/admin only.
    """
    permission_classes = [HasTenantRole]

    @extend_schema(
        tags=['RBAC - Audit'],
        summary='List audit entries',
        parameters=[
            OpenApiParameter(name='action', type=OpenApiTypes.STR, location=OpenApiParameter.QUERY),
            OpenApiParameter(name='entity_type', type=OpenApiTypes.STR, location=OpenApiParameter.QUERY),
            OpenApiParameter(name='entity_id', type=OpenApiTypes.STR, location=OpenApiParameter.QUERY),
            OpenApiParameter(name='actor_user_id', type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY),
        ],
        responses={200: AuditEntrySerializer(many=True)},
    )
    def get(self, request):
        entries = AuditEntry.objects.for_tenant(request.tenant_scope.tenant_id)

        filters = AuditEntryFilterSerializer(data=request.query_params)
        filters.is_valid(raise_exception=True)
        entries = entries.filter(**{key: value for key, value in filters.validated_data.items() if value})

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(entries, request, view=self)
        return paginator.get_paginated_response(AuditEntrySerializer(page, many=True).data)


class ReassignResourceView(APIView):
    """
    POST /v1/resources/reassign

    Move a misfiled resource to another tenant. The caller must be owner of
    both tenants, so this endpoint does not use the request's active tenant.
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=['RBAC - Tenant repair'],
        summary='Reassign resource tenant',
        request=ReassignResourceSerializer,
        responses={200: OpenApiTypes.OBJECT},
    )
    def post(self, request):
        serializer = ReassignResourceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        resource = TenantRepairService.reassign_resource_tenant(
            entity_type=data['entity_type'],
            resource_id=data['resource_id'],
            from_tenant_id=data['from_tenant_id'],
            to_tenant_id=data['to_tenant_id'],
            acting_admin=request.user,
        )
        return Response({
            'entity_type': data['entity_type'],
            'id': str(resource.id),
            'tenant_id': str(resource.tenant_id),
            'created_by_id': str(resource.created_by_id),
        })
