# Initial migration for projects and tasks

import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('tenants', '0001_initial'),
        ('rbac', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Project',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('name', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True)),
                ('status', models.CharField(choices=[('planning', 'Planning'), ('active', 'Active'), ('on_hold', 'On hold'), ('completed', 'Completed')], db_index=True, default='planning', max_length=20)),
                ('site_address', models.CharField(blank=True, help_text='Job site address', max_length=500)),
                ('start_date', models.DateField(blank=True, null=True)),
                ('due_date', models.DateField(blank=True, null=True)),
                ('created_by', models.ForeignKey(help_text='User who created this row', on_delete=django.db.models.deletion.PROTECT, related_name='+', to='rbac.user')),
                ('tenant', models.ForeignKey(help_text='Tenant that owns this row', on_delete=django.db.models.deletion.PROTECT, related_name='+', to='tenants.tenant')),
            ],
            options={
                'db_table': 'projects',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['tenant', 'status'], name='projects_tenant_status_idx'),
                    models.Index(fields=['tenant', 'created_at'], name='projects_tenant_created_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Task',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('title', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True)),
                ('status', models.CharField(choices=[('todo', 'To do'), ('in_progress', 'In progress'), ('done', 'Done')], db_index=True, default='todo', max_length=20)),
                ('due_date', models.DateField(blank=True, null=True)),
                ('assignee', models.ForeignKey(blank=True, help_text='Member responsible for the task', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to='rbac.user')),
                ('created_by', models.ForeignKey(help_text='User who created this row', on_delete=django.db.models.deletion.PROTECT, related_name='+', to='rbac.user')),
                ('project', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='tasks', to='projects.project')),
                ('tenant', models.ForeignKey(help_text='Tenant that owns this row', on_delete=django.db.models.deletion.PROTECT, related_name='+', to='tenants.tenant')),
            ],
            options={
                'db_table': 'tasks',
                'ordering': ['due_date', 'created_at'],
                'indexes': [
                    models.Index(fields=['tenant', 'status'], name='tasks_tenant_status_idx'),
                    models.Index(fields=['tenant', 'project'], name='tasks_tenant_project_idx'),
                ],
            },
        ),
    ]
