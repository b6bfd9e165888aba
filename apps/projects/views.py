"""
Project and task API views.

Every view runs behind HasTenantRole, which authorizes the request against
the active tenant and stores the resulting TenantScope on the request.
"""
import logging

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.permissions import HasTenantRole, requires_role
from apps.projects.serializers import (
    ProjectSerializer,
    ProjectWriteSerializer,
    TaskSerializer,
    TaskWriteSerializer,
)
from apps.projects.services import ProjectService
from apps.rbac.models import Role

logger = logging.getLogger(__name__)

STATUS_FILTER = OpenApiParameter(
    name='status',
    type=OpenApiTypes.STR,
    location=OpenApiParameter.QUERY,
    description='Filter by status'
)


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


class ProjectListView(APIView):
    """
    GET /v1/projects - List projects of the active tenant
    POST /v1/projects - Create a project
    """
    permission_classes = [HasTenantRole]

    @extend_schema(
        summary="List projects",
        parameters=[STATUS_FILTER],
        responses={200: ProjectSerializer(many=True)},
        tags=['Projects']
    )
    def get(self, request):
        projects = ProjectService.list_projects(request.tenant_scope, status=request.query_params.get('status'))
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(projects, request, view=self)
        return paginator.get_paginated_response(ProjectSerializer(page, many=True).data)

    @extend_schema(
        summary="Create project",
        request=ProjectWriteSerializer,
        responses={201: ProjectSerializer},
        tags=['Projects']
    )
    def post(self, request):
        serializer = ProjectWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        project = ProjectService.create_project(request.tenant_scope, serializer.validated_data, request=request)
        return Response(ProjectSerializer(project).data, status=status.HTTP_201_CREATED)


@requires_role(Role.ADMIN, methods=['DELETE'])
class ProjectDetailView(APIView):
    """
    GET/PATCH/DELETE /v1/projects/{project_id}

    A project of another tenant is reported as not found.
    """
    permission_classes = [HasTenantRole]

    @extend_schema(summary="Get project", responses={200: ProjectSerializer}, tags=['Projects'])
    def get(self, request, project_id):
        project = ProjectService.get_project(request.tenant_scope, project_id)
        return Response(ProjectSerializer(project).data)

    @extend_schema(
        summary="Update project",
        request=ProjectWriteSerializer,
        responses={200: ProjectSerializer},
        tags=['Projects']
    )
    def patch(self, request, project_id):
        serializer = ProjectWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        project = ProjectService.update_project(
            request.tenant_scope, project_id, serializer.validated_data, request=request
        )
        return Response(ProjectSerializer(project).data)

    @extend_schema(summary="Delete project (admin)", responses={204: None}, tags=['Projects'])
    def delete(self, request, project_id):
        ProjectService.delete_project(request.tenant_scope, project_id, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


class TaskListView(APIView):
    """
    GET /v1/projects/{project_id}/tasks - List tasks of a project
    POST /v1/projects/{project_id}/tasks - Create a task
    """
    permission_classes = [HasTenantRole]

    @extend_schema(
        summary="List tasks",
        parameters=[STATUS_FILTER],
        responses={200: TaskSerializer(many=True)},
        tags=['Tasks']
    )
    def get(self, request, project_id):
        tasks = ProjectService.list_tasks(
            request.tenant_scope, project_id=project_id, status=request.query_params.get('status')
        )
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(tasks, request, view=self)
        return paginator.get_paginated_response(TaskSerializer(page, many=True).data)

    @extend_schema(
        summary="Create task",
        request=TaskWriteSerializer,
        responses={201: TaskSerializer},
        tags=['Tasks']
    )
    def post(self, request, project_id):
        serializer = TaskWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        task = ProjectService.create_task(
            request.tenant_scope, project_id, serializer.validated_data, request=request
        )
        return Response(TaskSerializer(task).data, status=status.HTTP_201_CREATED)


@requires_role(Role.ADMIN, methods=['DELETE'])
class TaskDetailView(APIView):
    """GET/PATCH/DELETE /v1/tasks/{task_id}"""
    permission_classes = [HasTenantRole]

    @extend_schema(summary="Get task", responses={200: TaskSerializer}, tags=['Tasks'])
    def get(self, request, task_id):
        task = ProjectService.get_task(request.tenant_scope, task_id)
        return Response(TaskSerializer(task).data)

    @extend_schema(
        summary="Update task",
        request=TaskWriteSerializer,
        responses={200: TaskSerializer},
        tags=['Tasks']
    )
    def patch(self, request, task_id):
        serializer = TaskWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        task = ProjectService.update_task(request.tenant_scope, task_id, serializer.validated_data, request=request)
        return Response(TaskSerializer(task).data)

    @extend_schema(summary="Delete task (admin)", responses={204: None}, tags=['Tasks'])
    def delete(self, request, task_id):
        ProjectService.delete_task(request.tenant_scope, task_id, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)
