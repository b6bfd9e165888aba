"""
Tests for TenantService.
"""
import re
import uuid
from unittest.mock import patch

import pytest
from django.db import IntegrityError

from apps.core.exceptions import DuplicateSlugError, ForbiddenError, NotFoundError, ValidationError
from apps.rbac.models import AuditEntry, Membership, Role
from apps.tenants.models import Tenant
from apps.tenants.services import TenantService


@pytest.mark.django_db
class TestCreateTenant:

    def test_create_and_get_round_trip(self, owner):
        tenant = TenantService.create_tenant('Northwind Contractors', owner)
        fetched = TenantService.get_tenant(tenant.id)

        assert fetched == tenant
        assert fetched.name == 'Northwind Contractors'
        assert fetched.slug == 'northwind-contractors'
        assert fetched.status == Tenant.STATUS_ACTIVE
        assert fetched.subscription_tier == Tenant.TIER_STARTER

    def test_default_limits_from_settings(self, owner, settings):
        settings.DEFAULT_MAX_USERS = 4
        settings.DEFAULT_MAX_PROJECTS = 7
        tenant = TenantService.create_tenant('Limits Co', owner)

        assert tenant.max_users == 4
        assert tenant.max_projects == 7

    def test_creator_becomes_owner(self, owner):
        tenant = TenantService.create_tenant('Owner Check', owner)
        membership = Membership.objects.get(tenant=tenant, user=owner)

        assert membership.role == Role.OWNER
        assert membership.status == Membership.STATUS_ACTIVE
        assert membership.joined_at is not None

    def test_only_first_tenant_is_default(self, owner):
        first = TenantService.create_tenant('First', owner)
        second = TenantService.create_tenant('Second', owner)

        assert Membership.objects.get(tenant=first, user=owner).is_default is True
        assert Membership.objects.get(tenant=second, user=owner).is_default is False

    def test_slug_is_deduplicated(self, owner, other_owner):
        first = TenantService.create_tenant('Same Name', owner)
        second = TenantService.create_tenant('Same Name', other_owner)
        third = TenantService.create_tenant('Same  name!', owner)

        assert first.slug == 'same-name'
        assert second.slug == 'same-name-1'
        assert third.slug == 'same-name-2'

    def test_name_without_slug_characters(self, owner):
        with pytest.raises(ValidationError):
            TenantService.create_tenant('!!!', owner)

    @pytest.mark.parametrize('name', ['株式会社', 'Строй'])
    def test_non_latin_name_gets_generated_slug(self, owner, name):
        tenant = TenantService.create_tenant(name, owner)

        assert tenant.name == name
        assert re.fullmatch(r'tenant-[0-9a-f]{8}', tenant.slug)
        assert TenantService.get_tenant(tenant.id).slug == tenant.slug

    def test_concurrent_slug_collision(self, owner):
        with patch('apps.tenants.services.tenant_service.Tenant.objects.create', side_effect=IntegrityError('dup')):
            with pytest.raises(DuplicateSlugError):
                TenantService.create_tenant('Racing', owner)

    def test_creation_is_audited(self, owner, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            tenant = TenantService.create_tenant('Audited Co', owner)

        entry = AuditEntry.objects.get(action='tenant.created')
        assert entry.tenant_id == tenant.id
        assert entry.actor_user_id == owner.id
        assert entry.metadata['slug'] == 'audited-co'


@pytest.mark.django_db
class TestGetTenant:

    def test_unknown(self):
        with pytest.raises(NotFoundError):
            TenantService.get_tenant(uuid.uuid4())

    def test_malformed(self):
        with pytest.raises(NotFoundError):
            TenantService.get_tenant('acme')


@pytest.mark.django_db
class TestUpdateTenantSettings:

    def test_admin_updates_name(self, admin_user, tenant):
        updated = TenantService.update_tenant_settings(tenant.id, {'name': 'Acme Builders Ltd'}, admin_user)
        assert updated.name == 'Acme Builders Ltd'
        assert updated.slug == tenant.slug

    def test_settings_are_merged(self, owner, tenant):
        TenantService.update_tenant_settings(tenant.id, {'settings': {'units': 'metric', 'currency': 'EUR'}}, owner)
        updated = TenantService.update_tenant_settings(tenant.id, {'settings': {'currency': 'USD'}}, owner)

        assert updated.settings == {'units': 'metric', 'currency': 'USD'}

    def test_null_removes_key(self, owner, tenant):
        TenantService.update_tenant_settings(tenant.id, {'settings': {'units': 'metric', 'logo': 'x.png'}}, owner)
        updated = TenantService.update_tenant_settings(tenant.id, {'settings': {'logo': None}}, owner)

        assert updated.settings == {'units': 'metric'}

    def test_member_denied(self, member_user, tenant):
        with pytest.raises(ForbiddenError):
            TenantService.update_tenant_settings(tenant.id, {'name': 'Hacked'}, member_user)

    def test_non_member_denied(self, other_owner, tenant):
        with pytest.raises(ForbiddenError):
            TenantService.update_tenant_settings(tenant.id, {'name': 'Hacked'}, other_owner)

    def test_limits_cannot_be_patched(self, owner, tenant):
        with pytest.raises(ValidationError) as excinfo:
            TenantService.update_tenant_settings(tenant.id, {'max_users': 1000}, owner)
        assert excinfo.value.details['fields'] == ['max_users']

    def test_empty_name_rejected(self, owner, tenant):
        with pytest.raises(ValidationError):
            TenantService.update_tenant_settings(tenant.id, {'name': '   '}, owner)

    def test_settings_must_be_object(self, owner, tenant):
        with pytest.raises(ValidationError):
            TenantService.update_tenant_settings(tenant.id, {'settings': ['a']}, owner)

    def test_suspended_tenant_cannot_be_updated(self, owner, tenant):
        TenantService.suspend_tenant(tenant.id, reason='lapsed')
        with pytest.raises(ForbiddenError):
            TenantService.update_tenant_settings(tenant.id, {'name': 'New'}, owner)

    def test_diff_is_audited(self, owner, tenant, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            TenantService.update_tenant_settings(tenant.id, {'name': 'Acme 2', 'settings': {'units': 'imperial'}}, owner)

        entry = AuditEntry.objects.get(action='tenant.settings_updated')
        assert entry.metadata['diff']['name'] == {'from': 'Acme Builders', 'to': 'Acme 2'}
        assert entry.metadata['diff']['settings'] == {'units': {'from': None, 'to': 'imperial'}}

    def test_no_change_no_audit(self, owner, tenant, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            TenantService.update_tenant_settings(tenant.id, {'name': tenant.name}, owner)
        assert not AuditEntry.objects.filter(action='tenant.settings_updated').exists()


@pytest.mark.django_db
class TestSuspension:

    def test_suspend_and_reactivate(self, tenant):
        assert TenantService.suspend_tenant(tenant.id).is_suspended()
        assert TenantService.reactivate_tenant(tenant.id).is_active()

    def test_suspend_is_idempotent(self, tenant, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            TenantService.suspend_tenant(tenant.id)
            TenantService.suspend_tenant(tenant.id)

        assert AuditEntry.objects.filter(action='tenant.suspended').count() == 1
