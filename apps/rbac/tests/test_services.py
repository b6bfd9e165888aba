"""
Tests for MembershipService.

Covers adding and inviting members, capacity limits, role escalation,
the last-owner rule, default tenant selection, and concurrent writers.
"""
import threading
import uuid
from unittest.mock import patch

import pytest
from django.db import connection
from hypothesis import HealthCheck, given, settings, strategies as st

from apps.core.exceptions import (
    CapacityExceededError,
    ForbiddenError,
    LastOwnerError,
    MembershipExistsError,
    NotFoundError,
    ValidationError,
)
from apps.rbac.models import AuditEntry, Membership, Role
from apps.rbac.services import MembershipService
from apps.tenants.models import Tenant


@pytest.mark.django_db
class TestAddMember:

    def test_owner_adds_member(self, owner, tenant, make_user):
        user = make_user()
        membership = MembershipService.add_member(tenant.id, user.id, Role.MEMBER, invited_by=owner)

        assert membership.status == Membership.STATUS_ACTIVE
        assert membership.role == Role.MEMBER
        assert membership.invited_by_id == owner.id
        assert membership.joined_at is not None
        assert membership.is_default is False

    @pytest.mark.parametrize('target_exists', [True, False])
    def test_outsider_denied_whether_or_not_target_exists(self, target_exists, member_user, tenant, other_owner):
        target_id = member_user.id if target_exists else uuid.uuid4()

        with pytest.raises(ForbiddenError):
            MembershipService.remove_member(tenant.id, target_id, acting_user=other_owner)
        assert Membership.objects.get_active(tenant.id, member_user.id) is not None

    def test_member_removing_unknown_user_is_forbidden(self, member_user, tenant):
        with pytest.raises(ForbiddenError):
            MembershipService.remove_member(tenant.id, uuid.uuid4(), acting_user=member_user)

    def test_tenant_row_locked_before_target(self, admin_user, member_user, tenant):
        order = []
        lock_tenant = MembershipService._lock_tenant
        lock_membership = MembershipService._lock_membership

        def tracking_lock_tenant(tenant_id):
            order.append('tenant')
            return lock_tenant(tenant_id)

        def tracking_lock_membership(*args, **kwargs):
            order.append('membership')
            return lock_membership(*args, **kwargs)

        with patch.object(MembershipService, '_lock_tenant', staticmethod(tracking_lock_tenant)), \
                patch.object(MembershipService, '_lock_membership', staticmethod(tracking_lock_membership)):
            MembershipService.remove_member(tenant.id, member_user.id, acting_user=admin_user)

        assert order == ['tenant', 'membership']

    def test_co_owner_leaving_first_blocks_second_departure(self, owner, tenant, make_user, make_membership):
        co_owner = make_user()
        make_membership(tenant, co_owner, role=Role.OWNER)
        lock_tenant = MembershipService._lock_tenant

        def co_owner_leaves_while_waiting(tenant_id):
            Membership.objects.filter(tenant=tenant, user=co_owner).update(status=Membership.STATUS_REMOVED)
            return lock_tenant(tenant_id)

        with patch.object(MembershipService, '_lock_tenant', staticmethod(co_owner_leaves_while_waiting)):
            with pytest.raises(LastOwnerError):
                MembershipService.remove_member(tenant.id, owner.id, acting_user=owner)

        assert Membership.objects.get_active(tenant.id, owner.id) is not None

    def test_invite_creates_pending_membership(self, owner, tenant, make_user):
        user = make_user()
        membership = MembershipService.add_member(
            tenant.id, user.id, Role.ADMIN, invited_by=owner, status=Membership.STATUS_INVITED
        )

        assert membership.status == Membership.STATUS_INVITED
        assert membership.joined_at is None
        assert Membership.objects.get_active(tenant.id, user.id) is None

    def test_member_cannot_add(self, member_user, tenant, make_user):
        with pytest.raises(ForbiddenError):
            MembershipService.add_member(tenant.id, make_user().id, Role.MEMBER, invited_by=member_user)

    def test_admin_cannot_grant_owner(self, admin_user, tenant, make_user):
        with pytest.raises(ForbiddenError) as excinfo:
            MembershipService.add_member(tenant.id, make_user().id, Role.OWNER, invited_by=admin_user)
        assert excinfo.value.reason == 'role_escalation'

    def test_admin_can_grant_admin(self, admin_user, tenant, make_user):
        membership = MembershipService.add_member(tenant.id, make_user().id, Role.ADMIN, invited_by=admin_user)
        assert membership.role == Role.ADMIN

    def test_existing_member_rejected(self, owner, tenant, member_user):
        with pytest.raises(MembershipExistsError):
            MembershipService.add_member(tenant.id, member_user.id, Role.MEMBER, invited_by=owner)

    def test_removed_member_can_be_re_added(self, owner, tenant, make_user, make_membership):
        user = make_user()
        old = make_membership(tenant, user, status=Membership.STATUS_REMOVED)

        membership = MembershipService.add_member(tenant.id, user.id, Role.MEMBER, invited_by=owner)
        assert membership.id == old.id
        assert membership.status == Membership.STATUS_ACTIVE

    def test_capacity_counts_active_and_invited(self, owner, tenant, make_user):
        Tenant.objects.filter(id=tenant.id).update(max_users=3)
        MembershipService.add_member(tenant.id, make_user().id, Role.MEMBER, invited_by=owner)
        MembershipService.add_member(
            tenant.id, make_user().id, Role.MEMBER, invited_by=owner, status=Membership.STATUS_INVITED
        )

        with pytest.raises(CapacityExceededError) as excinfo:
            MembershipService.add_member(tenant.id, make_user().id, Role.MEMBER, invited_by=owner)
        assert excinfo.value.details['max_users'] == 3
        assert Membership.objects.seat_count(tenant.id) == 3

    def test_removed_members_free_seats(self, owner, tenant, make_user, make_membership):
        Tenant.objects.filter(id=tenant.id).update(max_users=2)
        make_membership(tenant, make_user(), status=Membership.STATUS_REMOVED)

        MembershipService.add_member(tenant.id, make_user().id, Role.MEMBER, invited_by=owner)

    def test_unknown_user(self, owner, tenant):
        with pytest.raises(NotFoundError):
            MembershipService.add_member(tenant.id, uuid.uuid4(), Role.MEMBER, invited_by=owner)

    def test_invalid_role(self, owner, tenant, make_user):
        with pytest.raises(ValidationError):
            MembershipService.add_member(tenant.id, make_user().id, 'superhero', invited_by=owner)

    def test_add_is_audited(self, owner, tenant, make_user, django_capture_on_commit_callbacks):
        user = make_user()
        with django_capture_on_commit_callbacks(execute=True):
            membership = MembershipService.add_member(tenant.id, user.id, Role.MEMBER, invited_by=owner)

        entry = AuditEntry.objects.get(action='membership.added')
        assert entry.tenant_id == tenant.id
        assert entry.actor_user_id == owner.id
        assert entry.entity_id == str(membership.id)
        assert entry.metadata['user_id'] == str(user.id)


@pytest.mark.django_db
class TestAcceptInvitation:

    def test_accept(self, owner, tenant, make_user):
        user = make_user()
        MembershipService.add_member(tenant.id, user.id, Role.MEMBER, invited_by=owner, status=Membership.STATUS_INVITED)

        membership = MembershipService.accept_invitation(tenant.id, user)
        assert membership.status == Membership.STATUS_ACTIVE
        assert membership.joined_at is not None

    def test_accept_without_invitation(self, make_user, tenant):
        with pytest.raises(NotFoundError):
            MembershipService.accept_invitation(tenant.id, make_user())


@pytest.mark.django_db
class TestRemoveMember:

    def test_admin_removes_member(self, admin_user, member_user, tenant):
        membership = MembershipService.remove_member(tenant.id, member_user.id, acting_user=admin_user)

        assert membership.status == Membership.STATUS_REMOVED
        assert membership.removed_at is not None
        assert Membership.objects.filter(id=membership.id).exists()

    def test_member_can_leave(self, member_user, tenant):
        MembershipService.remove_member(tenant.id, member_user.id, acting_user=member_user)
        assert Membership.objects.get_active(tenant.id, member_user.id) is None

    def test_member_cannot_remove_others(self, member_user, admin_user, tenant):
        with pytest.raises(ForbiddenError):
            MembershipService.remove_member(tenant.id, admin_user.id, acting_user=member_user)

    def test_admin_cannot_remove_owner(self, admin_user, owner, tenant):
        with pytest.raises(ForbiddenError):
            MembershipService.remove_member(tenant.id, owner.id, acting_user=admin_user)

    def test_last_owner_cannot_leave(self, owner, tenant):
        with pytest.raises(LastOwnerError):
            MembershipService.remove_member(tenant.id, owner.id, acting_user=owner)
        assert Membership.objects.get_active(tenant.id, owner.id).role == Role.OWNER

    def test_owner_can_leave_when_another_owner_exists(self, owner, tenant, make_user, make_membership):
        make_membership(tenant, make_user(), role=Role.OWNER)
        MembershipService.remove_member(tenant.id, owner.id, acting_user=owner)
        assert Membership.objects.get_active(tenant.id, owner.id) is None

    def test_invited_owner_does_not_count(self, owner, tenant, make_user, make_membership):
        make_membership(tenant, make_user(), role=Role.OWNER, status=Membership.STATUS_INVITED)
        with pytest.raises(LastOwnerError):
            MembershipService.remove_member(tenant.id, owner.id, acting_user=owner)

    def test_withdraw_invitation(self, owner, tenant, make_user):
        user = make_user()
        MembershipService.add_member(tenant.id, user.id, Role.MEMBER, invited_by=owner, status=Membership.STATUS_INVITED)

        membership = MembershipService.remove_member(tenant.id, user.id, acting_user=owner)
        assert membership.status == Membership.STATUS_REMOVED

    def test_remove_unknown(self, owner, tenant):
        with pytest.raises(NotFoundError):
            MembershipService.remove_member(tenant.id, uuid.uuid4(), acting_user=owner)

    def test_removal_clears_default(self, member_user, tenant):
        Membership.objects.filter(tenant=tenant, user=member_user).update(is_default=True)
        membership = MembershipService.remove_member(tenant.id, member_user.id, acting_user=member_user)
        assert membership.is_default is False


@pytest.mark.django_db
class TestChangeRole:

    def test_owner_promotes_member(self, owner, member_user, tenant):
        membership = MembershipService.change_role(tenant.id, member_user.id, Role.ADMIN, acting_user=owner)
        assert membership.role == Role.ADMIN

    def test_admin_cannot_promote_to_owner(self, admin_user, member_user, tenant):
        with pytest.raises(ForbiddenError):
            MembershipService.change_role(tenant.id, member_user.id, Role.OWNER, acting_user=admin_user)

    def test_admin_cannot_demote_owner(self, admin_user, owner, tenant):
        with pytest.raises(ForbiddenError):
            MembershipService.change_role(tenant.id, owner.id, Role.MEMBER, acting_user=admin_user)

    def test_member_cannot_change_roles(self, member_user, admin_user, tenant):
        with pytest.raises(ForbiddenError):
            MembershipService.change_role(tenant.id, admin_user.id, Role.MEMBER, acting_user=member_user)

    def test_last_owner_cannot_be_demoted(self, owner, tenant):
        with pytest.raises(LastOwnerError):
            MembershipService.change_role(tenant.id, owner.id, Role.ADMIN, acting_user=owner)

    def test_owner_demotion_with_second_owner(self, owner, tenant, make_user, make_membership):
        second = make_user()
        make_membership(tenant, second, role=Role.OWNER)

        membership = MembershipService.change_role(tenant.id, owner.id, Role.ADMIN, acting_user=second)
        assert membership.role == Role.ADMIN

    def test_same_role_is_noop(self, owner, member_user, tenant, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            MembershipService.change_role(tenant.id, member_user.id, Role.MEMBER, acting_user=owner)
        assert not AuditEntry.objects.filter(action='membership.role_changed').exists()

    def test_role_change_is_audited(self, owner, member_user, tenant, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            MembershipService.change_role(tenant.id, member_user.id, Role.ADMIN, acting_user=owner)

        entry = AuditEntry.objects.get(action='membership.role_changed')
        assert entry.metadata == {'user_id': str(member_user.id), 'from': 'member', 'to': 'admin'}

    @pytest.mark.parametrize('target_exists', [True, False])
    def test_outsider_denied_whether_or_not_target_exists(self, target_exists, member_user, tenant, other_owner):
        target_id = member_user.id if target_exists else uuid.uuid4()

        with pytest.raises(ForbiddenError):
            MembershipService.change_role(tenant.id, target_id, Role.ADMIN, acting_user=other_owner)
        assert Membership.objects.get_active(tenant.id, member_user.id).role == Role.MEMBER

    def test_actor_demoted_while_waiting_for_lock(self, owner, member_user, tenant, make_user, make_membership):
        co_owner = make_user()
        make_membership(tenant, co_owner, role=Role.OWNER)
        lock_tenant = MembershipService._lock_tenant

        def demoted_while_waiting(tenant_id):
            Membership.objects.filter(tenant=tenant, user=co_owner).update(role=Role.MEMBER)
            return lock_tenant(tenant_id)

        with patch.object(MembershipService, '_lock_tenant', staticmethod(demoted_while_waiting)):
            with pytest.raises(ForbiddenError):
                MembershipService.change_role(tenant.id, member_user.id, Role.ADMIN, acting_user=co_owner)

        assert Membership.objects.get_active(tenant.id, member_user.id).role == Role.MEMBER


@pytest.mark.django_db
class TestDefaultTenant:

    def test_create_tenant_sets_first_default(self, owner, tenant):
        assert Membership.objects.get(tenant=tenant, user=owner).is_default is True

    def test_set_default_moves_flag(self, make_user, make_membership, tenant, other_tenant):
        user = make_user()
        first = make_membership(tenant, user, is_default=True)
        make_membership(other_tenant, user)

        membership = MembershipService.set_default_tenant(user.id, other_tenant.id)

        assert membership.tenant_id == other_tenant.id
        first.refresh_from_db()
        assert first.is_default is False
        assert Membership.objects.filter(user=user, is_default=True).count() == 1

    def test_set_default_is_idempotent(self, owner, tenant):
        MembershipService.set_default_tenant(owner.id, tenant.id)
        MembershipService.set_default_tenant(owner.id, tenant.id)
        assert Membership.objects.filter(user=owner, is_default=True).count() == 1

    def test_set_default_requires_membership(self, owner, other_tenant):
        with pytest.raises(ForbiddenError):
            MembershipService.set_default_tenant(owner.id, other_tenant.id)

    def test_list_tenants_default_first(self, make_user, make_membership, tenant, other_tenant):
        user = make_user()
        make_membership(tenant, user)
        make_membership(other_tenant, user, is_default=True)

        tenants = MembershipService.list_tenants_for_user(user.id)
        assert [t.id for t in tenants] == [other_tenant.id, tenant.id]


OPERATIONS = st.lists(
    st.tuples(
        st.sampled_from(['add', 'promote', 'demote', 'remove']),
        st.integers(min_value=0, max_value=3),
    ),
    min_size=1,
    max_size=12,
)


@pytest.mark.django_db(transaction=True)
class TestOwnerInvariantProperty:
    """No sequence of adds, role changes and removals leaves a tenant without an owner."""

    @given(operations=OPERATIONS)
    @settings(max_examples=15, deadline=30000, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_tenant_always_keeps_an_owner(self, make_user, operations):
        from apps.tenants.services import TenantService

        founder = make_user(email=f'founder-{uuid.uuid4().hex[:8]}@example.com')
        tenant = TenantService.create_tenant('Invariant Co', founder)
        users = [founder]
        for _ in range(3):
            user = make_user(email=f'u-{uuid.uuid4().hex[:8]}@example.com')
            MembershipService.add_member(tenant.id, user.id, Role.MEMBER, invited_by=founder)
            users.append(user)

        for operation, index in operations:
            target = users[index]
            # Act as any remaining owner so the role checks pass
            actor_membership = Membership.objects.for_tenant(tenant.id).filter(role=Role.OWNER).first()
            actor = actor_membership.user
            try:
                if operation == 'add':
                    role = Role.OWNER if index % 2 else Role.MEMBER
                    MembershipService.add_member(tenant.id, target.id, role, invited_by=actor)
                elif operation == 'promote':
                    MembershipService.change_role(tenant.id, target.id, Role.OWNER, acting_user=actor)
                elif operation == 'demote':
                    MembershipService.change_role(tenant.id, target.id, Role.MEMBER, acting_user=actor)
                else:
                    MembershipService.remove_member(tenant.id, target.id, acting_user=actor)
            except (LastOwnerError, NotFoundError, MembershipExistsError):
                pass

            owners = Membership.objects.for_tenant(tenant.id).filter(role=Role.OWNER).count()
            assert owners >= 1


@pytest.mark.django_db(transaction=True)
class TestSingleDefaultProperty:
    """Interleaved default selections always leave exactly one default."""

    @given(choices=st.lists(st.integers(min_value=0, max_value=2), min_size=1, max_size=10))
    @settings(max_examples=15, deadline=30000, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_exactly_one_default(self, make_user, choices):
        from apps.tenants.services import TenantService

        user = make_user(email=f'multi-{uuid.uuid4().hex[:8]}@example.com')
        tenants = [TenantService.create_tenant(f'Site {n}', user) for n in range(3)]

        for index in choices:
            MembershipService.set_default_tenant(user.id, tenants[index].id)
            defaults = list(Membership.objects.filter(user=user, is_default=True).values_list('tenant_id', flat=True))
            assert defaults == [tenants[index].id]


def run_concurrently(*calls):
    """Run each call in its own thread and connection, released together. Returns results or exceptions."""
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(index, call):
        try:
            barrier.wait()
            outcomes[index] = call()
        except Exception as exc:
            outcomes[index] = exc
        finally:
            connection.close()

    threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


@pytest.mark.django_db(transaction=True)
class TestConcurrentWriters:
    """Writers racing on real row locks in separate connections."""

    @pytest.fixture(autouse=True)
    def require_postgresql(self):
        if connection.vendor != 'postgresql':
            pytest.skip('row-level locking races need PostgreSQL')

    def test_concurrent_default_selection_leaves_one_default(self, make_user):
        from apps.tenants.services import TenantService

        user = make_user()
        tenants = [TenantService.create_tenant(f'Race {n}', user) for n in range(3)]

        outcomes = run_concurrently(
            *[lambda t=tenant: MembershipService.set_default_tenant(user.id, t.id) for tenant in tenants * 2]
        )

        assert all(isinstance(outcome, Membership) for outcome in outcomes)
        assert Membership.objects.filter(user=user, is_default=True).count() == 1

    def test_concurrent_owner_departures_keep_one_owner(self, owner, tenant, make_user, make_membership):
        co_owner = make_user()
        make_membership(tenant, co_owner, role=Role.OWNER)

        outcomes = run_concurrently(
            lambda: MembershipService.remove_member(tenant.id, owner.id, acting_user=owner),
            lambda: MembershipService.remove_member(tenant.id, co_owner.id, acting_user=co_owner),
        )

        assert sorted(type(outcome).__name__ for outcome in outcomes) == ['LastOwnerError', 'Membership']
        assert Membership.objects.for_tenant(tenant.id).filter(role=Role.OWNER).count() == 1

    def test_concurrent_mutual_demotion_keeps_one_owner(self, owner, tenant, make_user, make_membership):
        co_owner = make_user()
        make_membership(tenant, co_owner, role=Role.OWNER)

        outcomes = run_concurrently(
            lambda: MembershipService.change_role(tenant.id, co_owner.id, Role.MEMBER, acting_user=owner),
            lambda: MembershipService.change_role(tenant.id, owner.id, Role.MEMBER, acting_user=co_owner),
        )

        assert sorted(type(outcome).__name__ for outcome in outcomes) == ['ForbiddenError', 'Membership']
        assert Membership.objects.for_tenant(tenant.id).filter(role=Role.OWNER).count() == 1
