"""
Tests for permission cache invalidation signals.

The signals act on the process-wide cache, so these tests use
``PermissionService()`` without injecting a cache.
"""
import pytest

from apps.rbac.models import RolePermission
from apps.rbac.services import PermissionService


@pytest.mark.django_db
class TestCacheInvalidationSignals:

    def test_adding_role_permission_reaches_cached_holders(self, roles, permissions, house_owner):
        service = PermissionService()
        assert not service.has_permission(house_owner.id, 'houses.create')

        RolePermission.objects.create(role=roles['house_owner'], permission=permissions['houses.create'])

        assert service.has_permission(house_owner.id, 'houses.create')

    def test_deleting_role_permission_reaches_cached_holders(self, roles, permissions, house_owner):
        link = RolePermission.objects.create(role=roles['house_owner'], permission=permissions['houses.create'])
        service = PermissionService()
        assert service.has_permission(house_owner.id, 'houses.create')

        link.delete()

        assert not service.has_permission(house_owner.id, 'houses.create')

    def test_queryset_delete_also_invalidates(self, roles, permissions, house_owner):
        RolePermission.objects.grant_permission(roles['house_owner'], permissions['houses.edit'])
        service = PermissionService()
        assert service.has_permission(house_owner.id, 'houses.edit')

        RolePermission.objects.revoke_permission(roles['house_owner'], permissions['houses.edit'])

        assert not service.has_permission(house_owner.id, 'houses.edit')

    def test_role_change_invalidates_user(self, roles, permissions, make_user):
        RolePermission.objects.create(role=roles['staff'], permission=permissions['users.view'])
        user = make_user('caretaker')
        service = PermissionService()
        assert not service.has_permission(user.id, 'users.view')

        user.role = roles['staff']
        user.save()

        assert service.has_permission(user.id, 'users.view')

    def test_other_roles_keep_their_entries(self, roles, permissions, house_owner, caretaker):
        service = PermissionService()
        service.get_user_permissions(caretaker.id)
        stats_before = service.cache.get_stats()['cached_users']

        RolePermission.objects.create(role=roles['house_owner'], permission=permissions['houses.view'])

        assert service.cache.get_stats()['cached_users'] == stats_before
