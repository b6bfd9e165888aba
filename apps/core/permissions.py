"""
DRF permission classes and decorators for tenant role enforcement.

This module provides:
- HasTenantRole: DRF permission class that runs AccessPolicy.authorize for
  the request's active tenant and attaches the resulting TenantScope
- @requires_role: Decorator to declare the minimum role on views
"""
import logging
from rest_framework.permissions import BasePermission, SAFE_METHODS

logger = logging.getLogger(__name__)


def action_for_method(method):
    """Map an HTTP method to a policy action name."""
    if method in SAFE_METHODS:
        return 'read'
    return {
        'POST': 'create',
        'PUT': 'update',
        'PATCH': 'update',
        'DELETE': 'delete',
    }.get(method, 'update')


class HasTenantRole(BasePermission):
    """
    DRF permission class that authorizes the request against its tenant.

    This permission class:
    1. Requires a resolved tenant context (set by TenantContextMiddleware)
    2. Calls AccessPolicy.authorize with the view's required_role and the
       action derived from the HTTP method (or view.tenant_action)
    3. Stores the returned TenantScope on request.tenant_scope
    4. Implements has_object_permission to verify object belongs to the scope

    Usage in views:
        @requires_role(Role.ADMIN)
        class MemberListView(APIView):
            permission_classes = [HasTenantRole]
    """

    def has_permission(self, request, view):
        from apps.rbac.policy import AccessPolicy

        tenant = getattr(request, 'tenant', None)
        user = getattr(request, 'user', None)
        if tenant is None or user is None or not user.is_authenticated:
            logger.warning(
                "Permission denied: no tenant context on request",
                extra={
                    'view': view.__class__.__name__,
                    'path': request.path,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            return False

        required_role = self._required_role(request, view)
        action = getattr(view, 'tenant_action', None) or action_for_method(request.method)

        # ForbiddenError propagates to custom_exception_handler
        request.tenant_scope = AccessPolicy.authorize(
            user,
            action,
            tenant.id,
            required_role=required_role,
        )
        return True

    def has_object_permission(self, request, view, obj):
        """Verify that the object belongs to the request's tenant scope."""
        scope = getattr(request, 'tenant_scope', None)
        if scope is None:
            return False

        object_tenant_id = getattr(obj, 'tenant_id', None)
        if object_tenant_id is None:
            return True

        if object_tenant_id != scope.tenant_id:
            logger.warning(
                "Object permission denied: Object belongs to different tenant",
                extra={
                    'tenant_id': str(scope.tenant_id),
                    'object_tenant_id': str(object_tenant_id),
                    'object_type': obj.__class__.__name__,
                    'view': view.__class__.__name__,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            return False
        return True

    @staticmethod
    def _required_role(request, view):
        per_method = getattr(view, 'required_roles', None) or {}
        if request.method in per_method:
            return per_method[request.method]
        return getattr(view, 'required_role', None)


def requires_role(role, methods=None):
    """
    Decorator to declare the minimum tenant role on a view class.

    Usage:
        @requires_role(Role.ADMIN)
        class AuditEntryListView(APIView):
            permission_classes = [HasTenantRole]

        @requires_role(Role.ADMIN, methods=['DELETE'])
        class ProjectDetailView(APIView):
            ...

    Args:
        role: Minimum Role required
        methods: Restrict the requirement to these HTTP methods

    Returns:
        Decorator function that sets required_role / required_roles
    """
    def decorator(view_class):
        if methods is None:
            view_class.required_role = role
        else:
            roles = dict(getattr(view_class, 'required_roles', None) or {})
            for method in methods:
                roles[method.upper()] = role
            view_class.required_roles = roles
        return view_class

    return decorator
