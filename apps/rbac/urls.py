"""
RBAC API URLs.

Provides endpoints for:
- Permission catalogue and statistics
- Staff permission management
- Permission cache administration
"""
from django.urls import path
from apps.rbac.views import (
    PermissionListView,
    PermissionStatsView,
    StaffListView,
    StaffPermissionsView,
    StaffPermissionRevokeView,
    StaffPermissionBulkView,
    StaffPermissionCopyView,
    PermissionCacheView,
    PermissionCacheUserView,
    PermissionCacheRoleView,
)

app_name = 'rbac'

urlpatterns = [
    # Permission catalogue
    path('permissions', PermissionListView.as_view(), name='permission-list'),
    path('permissions/stats', PermissionStatsView.as_view(), name='permission-stats'),

    # Staff permissions
    path('staff', StaffListView.as_view(), name='staff-list'),
    path('staff/<uuid:staff_id>/permissions', StaffPermissionsView.as_view(), name='staff-permissions'),
    path('staff/<uuid:staff_id>/permissions/bulk', StaffPermissionBulkView.as_view(), name='staff-permissions-bulk'),
    path('staff/<uuid:staff_id>/permissions/copy', StaffPermissionCopyView.as_view(), name='staff-permissions-copy'),
    path('staff/<uuid:staff_id>/permissions/<str:key>', StaffPermissionRevokeView.as_view(), name='staff-permission-revoke'),

    # Permission cache
    path('cache', PermissionCacheView.as_view(), name='cache'),
    path('cache/users/<uuid:user_id>', PermissionCacheUserView.as_view(), name='cache-user'),
    path('cache/roles/<uuid:role_id>', PermissionCacheRoleView.as_view(), name='cache-role'),
]
