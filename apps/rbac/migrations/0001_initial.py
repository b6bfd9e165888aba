# Initial migration for users, memberships and audit entries

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('tenants', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('email', models.EmailField(help_text='User email address (unique globally)', max_length=254, unique=True)),
                ('password_hash', models.CharField(blank=True, help_text='Hashed password', max_length=255)),
                ('first_name', models.CharField(blank=True, max_length=100)),
                ('last_name', models.CharField(blank=True, max_length=100)),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Whether user account is active')),
                ('is_superuser', models.BooleanField(default=False, help_text='Platform administrator (Django admin only)')),
                ('last_login_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'db_table': 'users',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='AuditEntry',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('tenant_id', models.UUIDField(db_index=True)),
                ('actor_user_id', models.UUIDField(blank=True, db_index=True, null=True)),
                ('action', models.CharField(db_index=True, max_length=100)),
                ('entity_type', models.CharField(max_length=50)),
                ('entity_id', models.CharField(max_length=64)),
                ('timestamp', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('metadata', models.JSONField(blank=True, default=dict)),
            ],
            options={
                'db_table': 'audit_entries',
                'ordering': ['-timestamp'],
                'verbose_name_plural': 'audit entries',
                'indexes': [
                    models.Index(fields=['tenant_id', 'timestamp'], name='audit_tenant_timestamp_idx'),
                    models.Index(fields=['entity_type', 'entity_id'], name='audit_entity_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Membership',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('role', models.CharField(choices=[('owner', 'Owner'), ('admin', 'Admin'), ('member', 'Member')], default='member', help_text='Role within the tenant', max_length=20)),
                ('is_default', models.BooleanField(default=False, help_text="Whether this is the user's default tenant")),
                ('status', models.CharField(choices=[('active', 'Active'), ('invited', 'Invited'), ('removed', 'Removed')], db_index=True, default='active', help_text='Membership status', max_length=20)),
                ('joined_at', models.DateTimeField(blank=True, help_text='When the membership became active', null=True)),
                ('removed_at', models.DateTimeField(blank=True, null=True)),
                ('invited_by', models.ForeignKey(blank=True, help_text='User who added or invited this member', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='invitations_sent', to='rbac.user')),
                ('tenant', models.ForeignKey(help_text='Tenant this membership belongs to', on_delete=django.db.models.deletion.PROTECT, related_name='memberships', to='tenants.tenant')),
                ('user', models.ForeignKey(help_text='Member', on_delete=django.db.models.deletion.PROTECT, related_name='memberships', to='rbac.user')),
            ],
            options={
                'db_table': 'memberships',
                'ordering': ['joined_at', 'created_at'],
                'indexes': [
                    models.Index(fields=['tenant', 'status', 'role'], name='memberships_tenant_status_idx'),
                    models.Index(fields=['user', 'status'], name='memberships_user_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('user', 'tenant'), name='uniq_membership_user_tenant'),
                    models.UniqueConstraint(condition=models.Q(('is_default', True)), fields=('user',), name='uniq_default_membership_per_user'),
                ],
            },
        ),
    ]
