"""
Tests for RBAC REST API endpoints.

Tests:
- Tenant context resolution over HTTP (401 / 403 / 409 / 200)
- The caller's memberships and default tenant
- Member management (list, add, invite, change role, remove)
- Audit entry viewing
- Resource reassignment
"""
import uuid

import pytest
from rest_framework import status

from apps.projects.services import ProjectService
from apps.rbac.models import AuditEntry, Membership, Role
from apps.rbac.services import MembershipService
from apps.tenants.services import TenantService


@pytest.mark.django_db
class TestTenantContextAPI:

    def test_missing_token(self, api_client):
        response = api_client.get('/v1/context')

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()['error']['code'] == 'INVALID_TOKEN'

    def test_bad_token(self, api_client):
        api_client.credentials(HTTP_AUTHORIZATION='Bearer not.a.jwt')
        assert api_client.get('/v1/context').status_code == status.HTTP_401_UNAUTHORIZED

    def test_single_tenant_resolves(self, auth_client, member_user, tenant):
        response = auth_client(member_user).get('/v1/context')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['tenant']['id'] == str(tenant.id)
        assert response.data['role'] == Role.MEMBER
        assert response.data['state'] == 'resolved'

    def test_ambiguous_returns_candidates(self, auth_client, make_user, make_membership, tenant, other_tenant):
        user = make_user()
        make_membership(tenant, user)
        make_membership(other_tenant, user)

        response = auth_client(user).get('/v1/context')

        assert response.status_code == status.HTTP_409_CONFLICT
        body = response.json()['error']
        assert body['code'] == 'TENANT_SELECTION_REQUIRED'
        assert {c['id'] for c in body['details']['tenants']} == {str(tenant.id), str(other_tenant.id)}

    def test_foreign_tenant_header(self, auth_client, member_user, other_tenant):
        response = auth_client(member_user, other_tenant).get('/v1/context')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()['error'] == {'code': 'NOT_AUTHORIZED', 'message': 'Not authorized'}

    def test_revoked_membership_applies_to_next_request(self, auth_client, member_user, tenant):
        client = auth_client(member_user, tenant)
        assert client.get('/v1/context').status_code == status.HTTP_200_OK

        Membership.objects.filter(tenant=tenant, user=member_user).update(status=Membership.STATUS_REMOVED)
        assert client.get('/v1/context').status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestMyMembershipsAPI:

    def test_lists_memberships_without_tenant_header(self, auth_client, owner, tenant):
        second = TenantService.create_tenant('Second Site', owner)

        response = auth_client(owner).get('/v1/memberships/me')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['count'] == 2
        # default first
        assert response.data['memberships'][0]['tenant']['id'] == str(tenant.id)
        assert {m['tenant']['id'] for m in response.data['memberships']} == {str(tenant.id), str(second.id)}

    def test_set_default(self, auth_client, owner, tenant):
        second = TenantService.create_tenant('Second Site', owner)

        response = auth_client(owner).post('/v1/memberships/default', {'tenant_id': str(second.id)}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['is_default'] is True
        assert Membership.objects.get(user=owner, is_default=True).tenant_id == second.id

    def test_set_default_foreign(self, auth_client, owner, other_tenant):
        response = auth_client(owner).post(
            '/v1/memberships/default', {'tenant_id': str(other_tenant.id)}, format='json'
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_accept_invitation(self, auth_client, owner, tenant, make_user):
        user = make_user()
        MembershipService.add_member(tenant.id, user.id, Role.MEMBER, invited_by=owner, status=Membership.STATUS_INVITED)

        response = auth_client(user).post('/v1/memberships/accept', {'tenant_id': str(tenant.id)}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == Membership.STATUS_ACTIVE


@pytest.mark.django_db
class TestMembersAPI:

    def test_member_can_list(self, auth_client, member_user, owner, tenant):
        response = auth_client(member_user, tenant).get('/v1/members')

        assert response.status_code == status.HTTP_200_OK
        emails = {row['user']['email'] for row in response.data['results']}
        assert emails == {owner.email, member_user.email}

    def test_member_cannot_add(self, auth_client, member_user, tenant, make_user):
        response = auth_client(member_user, tenant).post(
            '/v1/members', {'user_id': str(make_user().id)}, format='json'
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_admin_adds_by_email(self, auth_client, admin_user, tenant, make_user):
        user = make_user(email='newhire@example.com')

        response = auth_client(admin_user, tenant).post(
            '/v1/members', {'email': 'newhire@example.com', 'role': 'member'}, format='json'
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['user']['id'] == str(user.id)
        assert response.data['invited_by_id'] == str(admin_user.id)

    def test_admin_invites(self, auth_client, admin_user, tenant, make_user):
        user = make_user()

        response = auth_client(admin_user, tenant).post(
            '/v1/members', {'user_id': str(user.id), 'invite': True}, format='json'
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['status'] == Membership.STATUS_INVITED

    def test_admin_cannot_grant_owner(self, auth_client, admin_user, tenant, make_user):
        response = auth_client(admin_user, tenant).post(
            '/v1/members', {'user_id': str(make_user().id), 'role': 'owner'}, format='json'
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_add_unknown_email(self, auth_client, owner, tenant):
        response = auth_client(owner, tenant).post('/v1/members', {'email': 'ghost@example.com'}, format='json')
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_add_requires_user(self, auth_client, owner, tenant):
        response = auth_client(owner, tenant).post('/v1/members', {'role': 'member'}, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_capacity_exceeded(self, auth_client, owner, tenant, make_user):
        tenant.max_users = 1
        tenant.save()

        response = auth_client(owner, tenant).post('/v1/members', {'user_id': str(make_user().id)}, format='json')

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['error']['code'] == 'CAPACITY_EXCEEDED'

    def test_change_role(self, auth_client, owner, member_user, tenant):
        response = auth_client(owner, tenant).patch(
            f'/v1/members/{member_user.id}', {'role': 'admin'}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['role'] == Role.ADMIN

    def test_demote_last_owner(self, auth_client, owner, tenant):
        response = auth_client(owner, tenant).patch(f'/v1/members/{owner.id}', {'role': 'admin'}, format='json')

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['error']['code'] == 'LAST_OWNER'

    def test_member_leaves(self, auth_client, member_user, tenant):
        response = auth_client(member_user, tenant).delete(f'/v1/members/{member_user.id}')

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert Membership.objects.get(tenant=tenant, user=member_user).status == Membership.STATUS_REMOVED

    def test_member_cannot_remove_others(self, auth_client, member_user, owner, tenant):
        response = auth_client(member_user, tenant).delete(f'/v1/members/{owner.id}')
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_remove_unknown_member(self, auth_client, owner, tenant):
        response = auth_client(owner, tenant).delete(f'/v1/members/{uuid.uuid4()}')
        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.django_db
class TestAuditEntriesAPI:

    def test_admin_sees_own_tenant_entries(self, auth_client, owner, tenant, other_owner, other_tenant,
                                           member_user, django_capture_on_commit_callbacks):
        client = auth_client(owner, tenant)
        with django_capture_on_commit_callbacks(execute=True):
            client.patch(f'/v1/members/{member_user.id}', {'role': 'admin'}, format='json')
            TenantService.update_tenant_settings(other_tenant.id, {'name': 'Beta Two'}, other_owner)

        response = client.get('/v1/audit-entries')

        assert response.status_code == status.HTTP_200_OK
        actions = [row['action'] for row in response.data['results']]
        assert actions == ['membership.role_changed']
        assert all(row['tenant_id'] == str(tenant.id) for row in response.data['results'])

    def test_filter_by_action(self, auth_client, owner, tenant, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            TenantService.update_tenant_settings(tenant.id, {'settings': {'units': 'metric'}}, owner)

        response = auth_client(owner, tenant).get('/v1/audit-entries', {'action': 'tenant.settings_updated'})

        assert response.data['count'] == 1
        assert response.data['results'][0]['metadata']['diff']['settings']['units']['to'] == 'metric'
        assert AuditEntry.objects.for_tenant(tenant.id).count() == 1

    def test_member_forbidden(self, auth_client, member_user, tenant):
        response = auth_client(member_user, tenant).get('/v1/audit-entries')
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_filter_by_actor(self, auth_client, owner, member_user, tenant, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            TenantService.update_tenant_settings(tenant.id, {'name': 'Acme Two'}, owner)
            MembershipService.remove_member(tenant.id, member_user.id, acting_user=member_user)

        response = auth_client(owner, tenant).get('/v1/audit-entries', {'actor_user_id': str(member_user.id)})

        assert response.status_code == status.HTTP_200_OK
        assert [row['action'] for row in response.data['results']] == ['membership.removed']

    def test_malformed_actor_id_rejected(self, auth_client, owner, tenant):
        response = auth_client(owner, tenant).get('/v1/audit-entries', {'actor_user_id': 'not-a-uuid'})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error']['code'] == 'VALIDATION_ERROR'


@pytest.mark.django_db
class TestReassignAPI:

    def test_owner_of_both_tenants_reassigns(self, auth_client, owner, tenant, scope_for):
        second = TenantService.create_tenant('Second Site', owner)
        project = ProjectService.create_project(scope_for(owner, tenant, 'create'), {'name': 'Misfiled'})

        response = auth_client(owner).post('/v1/resources/reassign', {
            'entity_type': 'project',
            'resource_id': str(project.id),
            'from_tenant_id': str(tenant.id),
            'to_tenant_id': str(second.id),
        }, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['tenant_id'] == str(second.id)

    def test_unknown_entity_type(self, auth_client, owner, tenant, other_tenant):
        response = auth_client(owner).post('/v1/resources/reassign', {
            'entity_type': 'invoice',
            'resource_id': str(uuid.uuid4()),
            'from_tenant_id': str(tenant.id),
            'to_tenant_id': str(other_tenant.id),
        }, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_not_owner_of_destination(self, auth_client, owner, tenant, other_tenant, scope_for):
        project = ProjectService.create_project(scope_for(owner, tenant, 'create'), {'name': 'Stays'})

        response = auth_client(owner).post('/v1/resources/reassign', {
            'entity_type': 'project',
            'resource_id': str(project.id),
            'from_tenant_id': str(tenant.id),
            'to_tenant_id': str(other_tenant.id),
        }, format='json')
        assert response.status_code == status.HTTP_403_FORBIDDEN
