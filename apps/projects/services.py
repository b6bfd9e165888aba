"""
Project and task service.

All functions take the TenantScope returned by AccessPolicy.authorize and
go through the tenant-scoped repositories, so rows of other tenants are
never visible here.
"""
import logging

from django.db import transaction

from apps.core.exceptions import CapacityExceededError, ValidationError
from apps.core.storage import TenantScopedRepository
from apps.projects.models import Project, Task
from apps.rbac.audit import AuditRecorder
from apps.rbac.models import Membership
from apps.tenants.models import Tenant

logger = logging.getLogger(__name__)

PROJECT_FIELDS = {'name', 'description', 'status', 'site_address', 'start_date', 'due_date'}
TASK_FIELDS = {'title', 'description', 'status', 'assignee_id', 'due_date'}


def _diff(instance, patch):
    return {
        field: {'from': getattr(instance, field), 'to': value}
        for field, value in patch.items()
        if getattr(instance, field) != value
    }


def _only(data, allowed):
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError('Unknown or read-only fields', {'fields': unknown})
    return dict(data)


class ProjectService:
    """Tenant-scoped CRUD for projects and tasks, with capacity checks and auditing."""

    projects = TenantScopedRepository(Project)
    tasks = TenantScopedRepository(Task)

    @classmethod
    def list_projects(cls, scope, status=None):
        filters = {'status': status} if status else {}
        return cls.projects.find(scope, **filters)

    @classmethod
    def get_project(cls, scope, project_id):
        return cls.projects.get(scope, project_id)

    @classmethod
    @transaction.atomic
    def create_project(cls, scope, data, request=None):
        """
        Create a project in the scoped tenant.

        Raises:
            CapacityExceededError: Tenant already has max_projects projects
        """
        data = _only(data, PROJECT_FIELDS)
        if not (data.get('name') or '').strip():
            raise ValidationError('Project name is required', {'name': data.get('name')})

        # Serialize concurrent creates against the same limit
        tenant = Tenant.objects.select_for_update().get(id=scope.tenant_id)
        current = cls.projects.count(scope)
        if current >= tenant.max_projects:
            raise CapacityExceededError(
                'Tenant has reached its project limit',
                {'limit': 'max_projects', 'max_projects': tenant.max_projects, 'current': current}
            )

        project = cls.projects.insert(scope, data)
        AuditRecorder.record(
            tenant_id=scope.tenant_id,
            actor_user_id=scope.user_id,
            action='project.created',
            entity_type='project',
            entity_id=project.id,
            metadata={'name': project.name, 'tasks_deleted': tasks_deleted},
            request=request,
        )
        return project

    @classmethod
    @transaction.atomic
    def update_project(cls, scope, project_id, patch, request=None):
        patch = _only(patch, PROJECT_FIELDS)
        project = cls.projects.get(scope, project_id, for_update=True)
        diff = _diff(project, patch)
        project = cls.projects.update(scope, project.id, patch)
        if diff:
            AuditRecorder.record(
                tenant_id=scope.tenant_id,
                actor_user_id=scope.user_id,
                action='project.updated',
                entity_type='project',
                entity_id=project.id,
                metadata={'diff': diff},
                request=request,
            )
        return project

    @classmethod
    @transaction.atomic
    def delete_project(cls, scope, project_id, request=None):
        project = cls.projects.get(scope, project_id, for_update=True)
        # Tasks go with the project (FK cascade)
        tasks_deleted = cls.tasks.count(scope, project=project)
        cls.projects.delete(scope, project.id)
        AuditRecorder.record(
            tenant_id=scope.tenant_id,
            actor_user_id=scope.user_id,
            action='project.deleted',
            entity_type='project',
            entity_id=project_id,
            metadata={'name': project.name, 'tasks_deleted': tasks_deleted},
            request=request,
        )

    @classmethod
    def list_tasks(cls, scope, project_id=None, status=None):
        filters = {}
        if project_id:
            # Raises NotFoundError for a project outside the tenant
            filters['project'] = cls.projects.get(scope, project_id)
        if status:
            filters['status'] = status
        return cls.tasks.find(scope, **filters)

    @classmethod
    def get_task(cls, scope, task_id):
        return cls.tasks.get(scope, task_id)

    @classmethod
    def _check_assignee(cls, scope, assignee_id):
        if assignee_id and Membership.objects.get_active(scope.tenant_id, assignee_id) is None:
            raise ValidationError(
                'Assignee must be an active member of this tenant',
                {'assignee_id': str(assignee_id)}
            )

    @classmethod
    @transaction.atomic
    def create_task(cls, scope, project_id, data, request=None):
        """Create a task on a project of the scoped tenant."""
        data = _only(data, TASK_FIELDS)
        if not (data.get('title') or '').strip():
            raise ValidationError('Task title is required', {'title': data.get('title')})

        project = cls.projects.get(scope, project_id)
        cls._check_assignee(scope, data.get('assignee_id'))

        task = cls.tasks.insert(scope, {**data, 'project': project})
        AuditRecorder.record(
            tenant_id=scope.tenant_id,
            actor_user_id=scope.user_id,
            action='task.created',
            entity_type='task',
            entity_id=task.id,
            metadata={'project_id': str(project.id), 'title': task.title},
            request=request,
        )
        return task

    @classmethod
    @transaction.atomic
    def update_task(cls, scope, task_id, patch, request=None):
        patch = _only(patch, TASK_FIELDS)
        if 'assignee_id' in patch:
            cls._check_assignee(scope, patch['assignee_id'])

        task = cls.tasks.get(scope, task_id, for_update=True)
        diff = _diff(task, patch)
        task = cls.tasks.update(scope, task.id, patch)
        if diff:
            AuditRecorder.record(
                tenant_id=scope.tenant_id,
                actor_user_id=scope.user_id,
                action='task.updated',
                entity_type='task',
                entity_id=task.id,
                metadata={'diff': diff},
                request=request,
            )
        return task

    @classmethod
    @transaction.atomic
    def delete_task(cls, scope, task_id, request=None):
        task = cls.tasks.delete(scope, task_id)
        AuditRecorder.record(
            tenant_id=scope.tenant_id,
            actor_user_id=scope.user_id,
            action='task.deleted',
            entity_type='task',
            entity_id=task_id,
            metadata={'project_id': str(task.project_id)},
            request=request,
        )
