"""
Tests for RBAC models.
"""
import pytest
from django.db import IntegrityError, transaction

from apps.rbac.models import AuditEntry, Membership, Role, User, role_at_least


class TestRoleOrdering:

    @pytest.mark.parametrize('role,required,expected', [
        (Role.OWNER, Role.ADMIN, True),
        (Role.OWNER, Role.MEMBER, True),
        (Role.ADMIN, Role.ADMIN, True),
        (Role.ADMIN, Role.OWNER, False),
        (Role.MEMBER, Role.ADMIN, False),
        ('unknown', Role.MEMBER, False),
    ])
    def test_role_at_least(self, role, required, expected):
        assert role_at_least(role, required) is expected


@pytest.mark.django_db
class TestUserModel:

    def test_create_user_hashes_password(self):
        user = User.objects.create_user(email='Pat@Example.COM', password='s3cret-pass')

        assert user.email == 'Pat@example.com'
        assert user.password_hash != 's3cret-pass'
        assert user.check_password('s3cret-pass')
        assert not user.check_password('wrong')

    def test_create_user_requires_email(self):
        with pytest.raises(ValueError):
            User.objects.create_user(email='')

    def test_by_email_normalizes_domain(self, make_user):
        user = make_user(email='sam@example.com')
        assert User.objects.by_email('sam@EXAMPLE.com') == user

    def test_full_name_falls_back_to_email(self, make_user):
        assert make_user(email='x@example.com').get_full_name() == 'x@example.com'
        assert make_user(first_name='Ada', last_name='Byron').get_full_name() == 'Ada Byron'

    def test_superuser_is_staff(self):
        admin = User.objects.create_superuser(email='root@example.com', password='pw-123456')
        assert admin.is_staff
        assert admin.has_perm('anything')


@pytest.mark.django_db
class TestMembershipModel:

    def test_one_membership_per_user_and_tenant(self, tenant, owner):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Membership.objects.create(tenant=tenant, user=owner, role=Role.MEMBER)

    def test_one_default_per_user(self, make_user, make_membership, tenant, other_tenant):
        user = make_user()
        make_membership(tenant, user, is_default=True)
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                make_membership(other_tenant, user, is_default=True)

    def test_manager_helpers(self, make_user, make_membership, tenant):
        active = make_user()
        invited = make_user()
        make_membership(tenant, active)
        make_membership(tenant, invited, status=Membership.STATUS_INVITED)

        assert Membership.objects.get_active(tenant.id, active.id) is not None
        assert Membership.objects.get_active(tenant.id, invited.id) is None
        # owner + active + invited
        assert Membership.objects.seat_count(tenant.id) == 3
        assert Membership.objects.for_tenant(tenant.id).count() == 2


@pytest.mark.django_db
class TestAuditEntryModel:

    def test_append_only(self, tenant, owner):
        entry = AuditEntry(
            tenant_id=tenant.id,
            actor_user_id=owner.id,
            action='project.created',
            entity_type='project',
            entity_id='p-1',
        )
        entry.save()

        entry.action = 'project.deleted'
        with pytest.raises(ValueError):
            entry.save()
        with pytest.raises(ValueError):
            entry.delete()
        assert AuditEntry.objects.get(id=entry.id).action == 'project.created'

    def test_for_entity(self, tenant):
        AuditEntry(tenant_id=tenant.id, action='a', entity_type='project', entity_id='p-1').save()
        AuditEntry(tenant_id=tenant.id, action='b', entity_type='project', entity_id='p-2').save()

        assert AuditEntry.objects.for_entity('project', 'p-1').count() == 1
