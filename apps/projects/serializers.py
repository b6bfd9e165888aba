"""
Serializers for projects and tasks.
"""
from rest_framework import serializers

from apps.projects.models import Project, Task


class ProjectSerializer(serializers.ModelSerializer):
    """Read representation of a project."""

    tenant_id = serializers.UUIDField(read_only=True)
    created_by_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Project
        fields = [
            'id', 'tenant_id', 'name', 'description', 'status', 'site_address',
            'start_date', 'due_date', 'created_by_id', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class ProjectWriteSerializer(serializers.Serializer):
    """Input for creating or updating a project. Tenant is never accepted."""

    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=Project.STATUS_CHOICES, required=False)
    site_address = serializers.CharField(max_length=500, required=False, allow_blank=True)
    start_date = serializers.DateField(required=False, allow_null=True)
    due_date = serializers.DateField(required=False, allow_null=True)

    def validate(self, attrs):
        start, due = attrs.get('start_date'), attrs.get('due_date')
        if start and due and due < start:
            raise serializers.ValidationError({'due_date': 'Due date cannot be before start date'})
        return attrs


class TaskSerializer(serializers.ModelSerializer):
    """Read representation of a task."""

    tenant_id = serializers.UUIDField(read_only=True)
    project_id = serializers.UUIDField(read_only=True)
    assignee_id = serializers.UUIDField(read_only=True, allow_null=True)
    created_by_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Task
        fields = [
            'id', 'tenant_id', 'project_id', 'title', 'description', 'status',
            'assignee_id', 'due_date', 'created_by_id', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class TaskWriteSerializer(serializers.Serializer):
    """Input for creating or updating a task."""

    title = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=Task.STATUS_CHOICES, required=False)
    assignee_id = serializers.UUIDField(required=False, allow_null=True)
    due_date = serializers.DateField(required=False, allow_null=True)
