# Initial migration for tenants and subscription events

import uuid

import django.db.models.deletion
from django.db import migrations, models

import apps.tenants.models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Tenant',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('name', models.CharField(help_text='Organization display name', max_length=255)),
                ('slug', models.SlugField(help_text='URL-safe unique identifier', max_length=100, unique=True)),
                ('status', models.CharField(choices=[('active', 'Active'), ('suspended', 'Suspended')], db_index=True, default='active', help_text='Current tenant status', max_length=20)),
                ('subscription_tier', models.CharField(choices=[('starter', 'Starter'), ('professional', 'Professional'), ('enterprise', 'Enterprise')], default='starter', help_text='Billing tier, written only by the subscription service', max_length=20)),
                ('max_users', models.PositiveIntegerField(default=apps.tenants.models.default_max_users, help_text='Maximum active and invited memberships')),
                ('max_projects', models.PositiveIntegerField(default=apps.tenants.models.default_max_projects, help_text='Maximum projects')),
                ('settings', models.JSONField(blank=True, default=dict, help_text='Free-form tenant settings')),
            ],
            options={
                'db_table': 'tenants',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['status', 'created_at'], name='tenants_status_created_idx')],
            },
        ),
        migrations.CreateModel(
            name='SubscriptionEvent',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('provider_event_id', models.CharField(help_text='Event identifier from the billing provider', max_length=255, unique=True)),
                ('tier', models.CharField(choices=[('starter', 'Starter'), ('professional', 'Professional'), ('enterprise', 'Enterprise')], help_text='Tier after the event', max_length=20)),
                ('limits', models.JSONField(blank=True, default=dict, help_text='Limits applied by the event (max_users, max_projects)')),
                ('status', models.CharField(blank=True, choices=[('active', 'Active'), ('suspended', 'Suspended')], help_text='Tenant status requested by the event, if any', max_length=20, null=True)),
                ('received_at', models.DateTimeField(auto_now_add=True, help_text='When the event was applied')),
                ('tenant', models.ForeignKey(help_text='Tenant the event applies to', on_delete=django.db.models.deletion.PROTECT, related_name='subscription_events', to='tenants.tenant')),
            ],
            options={
                'db_table': 'subscription_events',
                'ordering': ['-received_at'],
            },
        ),
    ]
