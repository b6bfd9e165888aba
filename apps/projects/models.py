"""
Construction projects and their tasks.

Both are tenant-owned rows: every query reaches them through a
TenantScopedRepository keyed by the entity types registered below.
"""
from django.db import models

from apps.core.models import TenantScopedModel
from apps.core.storage import tenant_resource


@tenant_resource('project')
class Project(TenantScopedModel):
    """A construction project owned by one tenant."""

    STATUS_PLANNING = 'planning'
    STATUS_ACTIVE = 'active'
    STATUS_ON_HOLD = 'on_hold'
    STATUS_COMPLETED = 'completed'
    STATUS_CHOICES = [
        (STATUS_PLANNING, 'Planning'),
        (STATUS_ACTIVE, 'Active'),
        (STATUS_ON_HOLD, 'On hold'),
        (STATUS_COMPLETED, 'Completed'),
    ]

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PLANNING,
        db_index=True
    )
    site_address = models.CharField(
        max_length=500,
        blank=True,
        help_text="Job site address"
    )
    start_date = models.DateField(null=True, blank=True)
    due_date = models.DateField(null=True, blank=True)

    class Meta:
        db_table = 'projects'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['tenant', 'status'], name='projects_tenant_status_idx'),
            models.Index(fields=['tenant', 'created_at'], name='projects_tenant_created_idx'),
        ]

    def __str__(self):
        return self.name

    def on_tenant_reassigned(self, from_tenant_id, to_tenant_id, acting_user):
        """Move this project's tasks and drop assignees who are not members of the new tenant."""
        from apps.rbac.models import Membership

        member_ids = set(
            Membership.objects.for_tenant(to_tenant_id).values_list('user_id', flat=True)
        )
        tasks = list(Task.objects.select_for_update().filter(project=self, tenant_id=from_tenant_id))
        cleared_assignees = []
        reassigned_creators = []

        for task in tasks:
            task.tenant_id = to_tenant_id
            if task.assignee_id and task.assignee_id not in member_ids:
                cleared_assignees.append(str(task.id))
                task.assignee = None
            if task.created_by_id not in member_ids:
                reassigned_creators.append(str(task.id))
                task.created_by = acting_user
            task.save()

        return {
            'tasks_moved': len(tasks),
            'task_assignees_cleared': cleared_assignees,
            'task_creators_reassigned': reassigned_creators,
        }


@tenant_resource('task')
class Task(TenantScopedModel):
    """A unit of work on a project. Always in the same tenant as its project."""

    STATUS_TODO = 'todo'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_DONE = 'done'
    STATUS_CHOICES = [
        (STATUS_TODO, 'To do'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_DONE, 'Done'),
    ]

    # Tasks move only together with their project.
    reassignable = False

    project = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name='tasks'
    )
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_TODO,
        db_index=True
    )
    assignee = models.ForeignKey(
        'rbac.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        help_text="Member responsible for the task"
    )
    due_date = models.DateField(null=True, blank=True)

    PROTECTED_FIELDS = TenantScopedModel.PROTECTED_FIELDS + ('project', 'project_id')

    class Meta:
        db_table = 'tasks'
        ordering = ['due_date', 'created_at']
        indexes = [
            models.Index(fields=['tenant', 'status'], name='tasks_tenant_status_idx'),
            models.Index(fields=['tenant', 'project'], name='tasks_tenant_project_idx'),
        ]

    def __str__(self):
        return self.title
