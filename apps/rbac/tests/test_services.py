"""
Unit tests for RBAC services.

Tests permission resolution, individual staff grants and their history,
bulk operations, role permission changes and reporting.
"""
import pytest
from django.db import IntegrityError, transaction

from apps.core.exceptions import (
    AlreadyGranted, GrantNotFound, NotStaffMember, PermissionNotFound,
    RoleNotFound, UserNotFound, ValidationError,
)
from apps.rbac.cache import PermissionCache
from apps.rbac.models import RolePermission, StaffPermission
from apps.rbac.services import BatchResult, PermissionService


@pytest.fixture
def service():
    return PermissionService(cache=PermissionCache())


@pytest.mark.django_db
class TestPermissionResolution:
    """Test effective permission resolution."""

    def test_role_permissions_are_resolved(self, service, roles, permissions, house_owner):
        RolePermission.objects.grant_permission(roles['house_owner'], permissions['houses.create'])
        RolePermission.objects.grant_permission(roles['house_owner'], permissions['houses.view'])

        assert service.get_user_permissions(house_owner.id) == frozenset({'houses.create', 'houses.view'})

    def test_role_and_individual_grants_are_unioned(self, service, roles, permissions, staff_user, web_owner):
        RolePermission.objects.grant_permission(roles['staff'], permissions['houses.view'])
        service.grant_permission(staff_user.id, 'houses.create', granted_by=web_owner)

        assert service.get_user_permissions(staff_user.id) == frozenset({'houses.view', 'houses.create'})

    def test_duplicate_keys_collapse(self, service, roles, permissions, staff_user, web_owner):
        RolePermission.objects.grant_permission(roles['staff'], permissions['houses.view'])
        service.grant_permission(staff_user.id, 'houses.view', granted_by=web_owner)

        assert service.get_user_permissions(staff_user.id) == frozenset({'houses.view'})

    def test_revoked_grants_do_not_count(self, service, permissions, staff_user, web_owner):
        service.grant_permission(staff_user.id, 'houses.create', granted_by=web_owner)
        service.revoke_permission(staff_user.id, 'houses.create', revoked_by=web_owner)

        assert service.get_user_permissions(staff_user.id) == frozenset()

    def test_unknown_user_resolves_to_empty_set(self, service, db):
        import uuid
        assert service.get_user_permissions(uuid.uuid4()) == frozenset()

    def test_resolution_is_cached(self, service, roles, permissions, house_owner, django_assert_num_queries):
        RolePermission.objects.grant_permission(roles['house_owner'], permissions['houses.view'])
        service.get_user_permissions(house_owner.id)

        with django_assert_num_queries(0):
            assert service.has_permission(house_owner.id, 'houses.view')

    def test_has_permission(self, service, roles, permissions, caretaker):
        RolePermission.objects.grant_permission(roles['caretaker'], permissions['flats.view'])

        assert service.has_permission(caretaker.id, 'flats.view')
        assert not service.has_permission(caretaker.id, 'flats.create')

    def test_batch_check(self, service, roles, permissions, house_owner, caretaker):
        RolePermission.objects.grant_permission(roles['house_owner'], permissions['houses.create'])

        result = service.batch_check([house_owner.id, caretaker.id], 'houses.create')

        assert result == {str(house_owner.id): True, str(caretaker.id): False}

    def test_role_permissions(self, service, roles, permissions):
        RolePermission.objects.grant_permission(roles['caretaker'], permissions['flats.view'])

        assert service.get_role_permissions(roles['caretaker'].id) == frozenset({'flats.view'})

    def test_grouped_permissions(self, service, permissions):
        grouped = service.grouped_permissions()

        assert {perm['key'] for perm in grouped['houses']} == {
            'houses.view', 'houses.create', 'houses.edit', 'houses.delete',
        }
        assert 'cache' in grouped


@pytest.mark.django_db
class TestStaffGrants:
    """Test individual permission grants to staff members."""

    def test_grant_then_revoke_leaves_history(self, service, permissions, staff_user, web_owner):
        service.grant_permission(staff_user.id, 'houses.create', granted_by=web_owner)
        assert service.has_permission(staff_user.id, 'houses.create')

        service.revoke_permission(staff_user.id, 'houses.create', revoked_by=web_owner)
        assert not service.has_permission(staff_user.id, 'houses.create')

        history = service.permission_history(staff_user.id)
        assert len(history) == 1
        assert history[0]['permission']['key'] == 'houses.create'
        assert history[0]['revoked_at'] is not None
        assert history[0]['status'] == 'revoked'
        assert history[0]['granted_by']['email'] == web_owner.email
        assert history[0]['revoked_by']['email'] == web_owner.email

    def test_grant_to_non_staff_fails(self, service, permissions, house_owner, web_owner):
        with pytest.raises(NotStaffMember):
            service.grant_permission(house_owner.id, 'houses.create', granted_by=web_owner)

    def test_grant_to_unknown_user_fails(self, service, permissions, web_owner):
        import uuid
        with pytest.raises(UserNotFound):
            service.grant_permission(uuid.uuid4(), 'houses.create', granted_by=web_owner)

    def test_grant_unknown_permission_fails(self, service, permissions, staff_user, web_owner):
        with pytest.raises(PermissionNotFound):
            service.grant_permission(staff_user.id, 'houses.teleport', granted_by=web_owner)

    def test_duplicate_active_grant_fails(self, service, permissions, staff_user, web_owner):
        service.grant_permission(staff_user.id, 'houses.create', granted_by=web_owner)

        with pytest.raises(AlreadyGranted):
            service.grant_permission(staff_user.id, 'houses.create', granted_by=web_owner)

        assert StaffPermission.objects.active().filter(user=staff_user).count() == 1

    def test_regrant_after_revoke_is_allowed(self, service, permissions, staff_user, web_owner):
        service.grant_permission(staff_user.id, 'houses.create', granted_by=web_owner)
        service.revoke_permission(staff_user.id, 'houses.create', revoked_by=web_owner)
        service.grant_permission(staff_user.id, 'houses.create', granted_by=web_owner)

        assert service.has_permission(staff_user.id, 'houses.create')
        assert StaffPermission.objects.for_user(staff_user.id).count() == 2

    def test_database_rejects_second_active_grant(self, permissions, staff_user):
        StaffPermission.objects.create(user=staff_user, permission=permissions['houses.view'])

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                StaffPermission.objects.create(user=staff_user, permission=permissions['houses.view'])

    def test_revoke_without_active_grant_fails(self, service, permissions, staff_user, web_owner):
        with pytest.raises(GrantNotFound):
            service.revoke_permission(staff_user.id, 'houses.create', revoked_by=web_owner)

    def test_grant_invalidates_cached_permissions(self, service, permissions, staff_user, web_owner):
        assert not service.has_permission(staff_user.id, 'houses.edit')

        service.grant_permission(staff_user.id, 'houses.edit', granted_by=web_owner)

        assert service.has_permission(staff_user.id, 'houses.edit')


@pytest.mark.django_db
class TestBulkOperations:
    """Test bulk grant, bulk revoke and copy."""

    def test_bulk_grant_reports_each_key(self, service, permissions, staff_user, web_owner):
        service.grant_permission(staff_user.id, 'houses.view', granted_by=web_owner)

        result = service.bulk_grant(
            staff_user.id,
            ['houses.view', 'houses.create', 'nope.nothing'],
            granted_by=web_owner,
        )

        assert result.succeeded == ['houses.create']
        assert {failure['permission']: failure['code'] for failure in result.failed} == {
            'houses.view': 'ALREADY_GRANTED',
            'nope.nothing': 'PERMISSION_NOT_FOUND',
        }
        assert result.to_dict()['summary'] == {'total': 3, 'succeeded': 1, 'failed': 2}

    def test_bulk_revoke(self, service, permissions, staff_user, web_owner):
        service.bulk_grant(staff_user.id, ['houses.view', 'houses.edit'], granted_by=web_owner)

        result = service.bulk_revoke(staff_user.id, ['houses.view', 'houses.delete'], revoked_by=web_owner)

        assert result.succeeded == ['houses.view']
        assert result.failed[0]['code'] == 'GRANT_NOT_FOUND'
        assert service.get_user_permissions(staff_user.id) == frozenset({'houses.edit'})

    def test_copy_permissions(self, service, permissions, make_user, staff_user, web_owner):
        other = make_user('staff', parent=web_owner)
        service.bulk_grant(staff_user.id, ['houses.view', 'flats.view'], granted_by=web_owner)

        result = service.copy_permissions(staff_user.id, other.id, granted_by=web_owner)

        assert sorted(result.succeeded) == ['flats.view', 'houses.view']
        assert service.get_user_permissions(other.id) == frozenset({'houses.view', 'flats.view'})

    def test_copy_to_self_fails(self, service, staff_user):
        with pytest.raises(ValidationError):
            service.copy_permissions(staff_user.id, staff_user.id)

    def test_copy_from_staff_without_grants_fails(self, service, make_user, staff_user, web_owner):
        other = make_user('staff', parent=web_owner)

        with pytest.raises(ValidationError):
            service.copy_permissions(other.id, staff_user.id)

    def test_batch_result_defaults_empty(self):
        assert BatchResult().to_dict()['summary']['total'] == 0


@pytest.mark.django_db
class TestRolePermissions:
    """Test role permission assignment and cache invalidation."""

    def test_assign_role_permission_reaches_every_holder(self, service, roles, permissions, make_user):
        owners = [make_user('house_owner'), make_user('house_owner')]
        for owner in owners:
            assert not service.has_permission(owner.id, 'flats.create')

        service.assign_role_permission('house_owner', 'flats.create')

        for owner in owners:
            assert service.has_permission(owner.id, 'flats.create')

    def test_assign_is_idempotent(self, service, roles, permissions):
        first = service.assign_role_permission('caretaker', 'flats.view')
        second = service.assign_role_permission('caretaker', 'flats.view')

        assert first.pk == second.pk

    def test_remove_role_permission(self, service, roles, permissions, caretaker):
        service.assign_role_permission('caretaker', 'flats.view')
        assert service.has_permission(caretaker.id, 'flats.view')

        assert service.remove_role_permission('caretaker', 'flats.view') == 1
        assert not service.has_permission(caretaker.id, 'flats.view')

    def test_unknown_role_fails(self, service, roles, permissions):
        with pytest.raises(RoleNotFound):
            service.assign_role_permission('landlord', 'flats.view')


@pytest.mark.django_db
class TestReporting:
    """Test staff listings and statistics."""

    def test_staff_with_permissions(self, service, permissions, staff_user, web_owner):
        service.grant_permission(staff_user.id, 'houses.view', granted_by=web_owner)

        staff = service.staff_with_permissions()

        assert len(staff) == 1
        assert staff[0]['email'] == staff_user.email
        assert [perm['key'] for perm in staff[0]['permissions']] == ['houses.view']

    def test_permission_stats(self, service, roles, permissions, staff_user, web_owner):
        RolePermission.objects.grant_permission(roles['caretaker'], permissions['houses.view'])
        service.grant_permission(staff_user.id, 'houses.view', granted_by=web_owner)
        service.grant_permission(staff_user.id, 'houses.edit', granted_by=web_owner)
        service.revoke_permission(staff_user.id, 'houses.edit', revoked_by=web_owner)

        stats = {row['key']: row for row in service.permission_stats()}

        assert stats['houses.view']['role_assignments'] == 1
        assert stats['houses.view']['staff_assignments'] == 1
        assert stats['houses.view']['total_assigned'] == 2
        assert stats['houses.edit']['staff_assignments'] == 0

    def test_staff_activity_counts_actions_by_granter(self, service, permissions, staff_user, web_owner):
        service.grant_permission(staff_user.id, 'houses.view', granted_by=web_owner)
        service.grant_permission(staff_user.id, 'houses.edit', granted_by=web_owner)
        service.revoke_permission(staff_user.id, 'houses.edit', revoked_by=web_owner)

        activity = service.staff_activity(web_owner.id)

        assert activity == {
            'granted_permissions': 2,
            'revoked_permissions': 1,
            'total_activity': 3,
            'period_days': 30,
        }

    def test_history_is_newest_first_and_limited(self, service, permissions, staff_user, web_owner):
        for key in ('houses.view', 'houses.edit', 'houses.delete'):
            service.grant_permission(staff_user.id, key, granted_by=web_owner)

        history = service.permission_history(staff_user.id, limit=2)

        assert len(history) == 2
        assert history[0]['granted_at'] >= history[1]['granted_at']
        assert all(entry['status'] == 'active' for entry in history)
