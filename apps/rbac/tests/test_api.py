"""
Tests for RBAC REST API endpoints.

Tests:
- Permission catalogue and statistics
- Staff permission grant, revoke, history, bulk and copy
- Permission cache administration
- Access checks on every endpoint
"""
import uuid

import pytest
from rest_framework import status
from rest_framework.test import force_authenticate

from apps.rbac.models import RolePermission, StaffPermission
from apps.rbac.services import PermissionService
from apps.rbac.views import (
    PermissionCacheRoleView, PermissionCacheUserView, PermissionCacheView,
    PermissionListView, PermissionStatsView, StaffListView,
    StaffPermissionBulkView, StaffPermissionCopyView,
    StaffPermissionRevokeView, StaffPermissionsView,
)


def call(view_class, factory, method, user, path='/v1/rbac/', data=None, **kwargs):
    request = getattr(factory, method)(path, data, format='json')
    if user is not None:
        force_authenticate(request, user=user, token={'user_id': str(user.id)})
    return view_class.as_view()(request, **kwargs)


@pytest.mark.django_db
class TestPermissionCatalogueAPI:

    def test_web_owner_lists_grouped_permissions(self, api_factory, permissions, web_owner):
        response = call(PermissionListView, api_factory, 'get', web_owner)

        assert response.status_code == status.HTTP_200_OK
        assert response.data['count'] == len(permissions)
        assert 'houses' in response.data['permissions']

    def test_caretaker_without_key_is_denied_with_reason(self, api_factory, permissions, caretaker):
        response = call(PermissionListView, api_factory, 'get', caretaker)

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data['code'] == 'PERMISSION_DENIED'
        assert response.data['details']['missing_permissions'] == ['permissions.view']

    def test_role_permission_grants_access(self, api_factory, roles, permissions, staff_user):
        RolePermission.objects.grant_permission(roles['staff'], permissions['permissions.view'])

        response = call(PermissionStatsView, api_factory, 'get', staff_user)

        assert response.status_code == status.HTTP_200_OK
        assert {row['key'] for row in response.data['permissions']} == set(permissions)

    def test_unauthenticated_request_is_rejected(self, api_factory, permissions):
        response = call(PermissionListView, api_factory, 'get', None)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data['code'] == 'AUTHENTICATION_FAILED'


@pytest.mark.django_db
class TestStaffPermissionsAPI:
    """Test staff permission management endpoints."""

    def test_grant_permission(self, api_factory, permissions, web_owner, staff_user):
        response = call(
            StaffPermissionsView, api_factory, 'post', web_owner,
            data={'permission': 'houses.create'}, staff_id=staff_user.id,
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['permission']['key'] == 'houses.create'
        assert response.data['status'] == 'active'
        assert response.data['granted_by']['email'] == web_owner.email
        assert PermissionService().has_permission(staff_user.id, 'houses.create')

    def test_duplicate_grant_conflicts(self, api_factory, permissions, web_owner, staff_user):
        PermissionService().grant_permission(staff_user.id, 'houses.create', granted_by=web_owner)

        response = call(
            StaffPermissionsView, api_factory, 'post', web_owner,
            data={'permission': 'houses.create'}, staff_id=staff_user.id,
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['code'] == 'ALREADY_GRANTED'

    def test_grant_to_non_staff_is_rejected(self, api_factory, permissions, web_owner, house_owner):
        response = call(
            StaffPermissionsView, api_factory, 'post', web_owner,
            data={'permission': 'houses.create'}, staff_id=house_owner.id,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'NOT_STAFF_MEMBER'

    def test_missing_permission_field(self, api_factory, permissions, web_owner, staff_user):
        response = call(StaffPermissionsView, api_factory, 'post', web_owner, data={}, staff_id=staff_user.id)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'permission' in response.data['details']

    def test_staff_cannot_grant_without_manage_key(self, api_factory, permissions, make_user, web_owner, staff_user):
        other = make_user('staff', parent=web_owner)

        response = call(
            StaffPermissionsView, api_factory, 'post', staff_user,
            data={'permission': 'houses.create'}, staff_id=other.id,
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert not StaffPermission.objects.exists()

    def test_history_and_revoke(self, api_factory, permissions, web_owner, staff_user):
        PermissionService().grant_permission(staff_user.id, 'houses.create', granted_by=web_owner)

        revoke = call(
            StaffPermissionRevokeView, api_factory, 'delete', web_owner,
            staff_id=staff_user.id, key='houses.create',
        )
        history = call(StaffPermissionsView, api_factory, 'get', web_owner, staff_id=staff_user.id)

        assert revoke.status_code == status.HTTP_200_OK
        assert revoke.data['status'] == 'revoked'
        assert history.data['permissions'] == []
        assert len(history.data['history']) == 1
        assert history.data['history'][0]['revoked_at'] is not None
        assert history.data['activity']['period_days'] == 30

    def test_revoke_missing_grant(self, api_factory, permissions, web_owner, staff_user):
        response = call(
            StaffPermissionRevokeView, api_factory, 'delete', web_owner,
            staff_id=staff_user.id, key='houses.create',
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['code'] == 'GRANT_NOT_FOUND'

    def test_bulk_grant(self, api_factory, permissions, web_owner, staff_user):
        response = call(
            StaffPermissionBulkView, api_factory, 'post', web_owner,
            data={'action': 'grant', 'permissions': ['houses.view', 'houses.view', 'missing.key']},
            staff_id=staff_user.id,
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['succeeded'] == ['houses.view']
        assert response.data['summary'] == {'total': 2, 'succeeded': 1, 'failed': 1}

    def test_bulk_rejects_unknown_action(self, api_factory, permissions, web_owner, staff_user):
        response = call(
            StaffPermissionBulkView, api_factory, 'post', web_owner,
            data={'action': 'toggle', 'permissions': ['houses.view']},
            staff_id=staff_user.id,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_copy_permissions(self, api_factory, permissions, make_user, web_owner, staff_user):
        other = make_user('staff', parent=web_owner)
        PermissionService().bulk_grant(staff_user.id, ['houses.view', 'flats.view'], granted_by=web_owner)

        response = call(
            StaffPermissionCopyView, api_factory, 'post', web_owner,
            data={'source_staff_id': str(staff_user.id)}, staff_id=other.id,
        )

        assert response.status_code == status.HTTP_200_OK
        assert sorted(response.data['succeeded']) == ['flats.view', 'houses.view']

    def test_staff_list(self, api_factory, permissions, web_owner, staff_user):
        PermissionService().grant_permission(staff_user.id, 'houses.view', granted_by=web_owner)

        response = call(StaffListView, api_factory, 'get', web_owner)

        assert response.data['count'] == 1
        assert response.data['staff'][0]['permissions'][0]['key'] == 'houses.view'


@pytest.mark.django_db
class TestPermissionCacheAPI:

    def test_stats_and_clear(self, api_factory, permissions, developer, house_owner):
        PermissionService().get_user_permissions(house_owner.id)

        stats = call(PermissionCacheView, api_factory, 'get', developer)
        cleared = call(PermissionCacheView, api_factory, 'delete', developer)
        after = call(PermissionCacheView, api_factory, 'get', developer)

        assert stats.data['cached_users'] >= 1
        assert cleared.status_code == status.HTTP_204_NO_CONTENT
        assert after.data['cached_users'] == 0

    def test_invalidate_single_user_and_role(self, api_factory, roles, permissions, web_owner, house_owner):
        response = call(PermissionCacheUserView, api_factory, 'delete', web_owner, user_id=house_owner.id)
        assert response.status_code == status.HTTP_204_NO_CONTENT

        response = call(PermissionCacheRoleView, api_factory, 'delete', web_owner, role_id=roles['house_owner'].id)
        assert response.status_code == status.HTTP_204_NO_CONTENT

    def test_house_owner_cannot_manage_cache(self, api_factory, permissions, house_owner):
        response = call(PermissionCacheView, api_factory, 'delete', house_owner)

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_unknown_user_id_is_harmless(self, api_factory, permissions, web_owner):
        response = call(PermissionCacheUserView, api_factory, 'delete', web_owner, user_id=uuid.uuid4())

        assert response.status_code == status.HTTP_204_NO_CONTENT
