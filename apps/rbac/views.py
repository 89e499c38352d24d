"""
RBAC REST API views.

Implements endpoints for:
- Permission catalogue (grouped) and usage statistics
- Staff permission management (history, grant, revoke, bulk, copy)
- Permission cache administration
"""
import logging

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import ValidationError
from apps.core.permissions import HasAccess, requires_access
from apps.rbac.serializers import (
    BulkPermissionSerializer, CopyPermissionsSerializer,
    GrantPermissionSerializer, StaffPermissionSerializer,
)
from apps.rbac.services import PermissionService

logger = logging.getLogger(__name__)


def _validated(serializer_class, data):
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        raise ValidationError('Validation error', details=serializer.errors)
    return serializer.validated_data


# ===== PERMISSION CATALOGUE =====

@extend_schema(
    tags=['RBAC - Permissions'],
    summary='List permissions grouped by category',
    description='''
Return the permission catalogue grouped by the namespace before the first
dot of each key (`houses.create` belongs to `houses`).

**Required permission:** `permissions.view`
    ''',
    responses={200: OpenApiTypes.OBJECT},
    examples=[
        OpenApiExample(
            'Success Response',
            value={
                'count': 2,
                'permissions': {
                    'houses': [
                        {'id': '0b0c...', 'key': 'houses.create', 'description': 'Create houses'},
                        {'id': '5d1e...', 'key': 'houses.view', 'description': 'View houses'},
                    ],
                },
            },
            response_only=True
        )
    ]
)
class PermissionListView(APIView):
    """
    GET /v1/rbac/permissions
    """
    permission_classes = [HasAccess]
    required_permissions = {'permissions.view'}

    def get(self, request):
        grouped = PermissionService().grouped_permissions()
        return Response({
            'count': sum(len(perms) for perms in grouped.values()),
            'permissions': grouped,
        })


@extend_schema(
    tags=['RBAC - Permissions'],
    summary='Permission usage statistics',
    responses={200: OpenApiTypes.OBJECT},
)
class PermissionStatsView(APIView):
    """
    GET /v1/rbac/permissions/stats

    How many roles and active staff grants reference each permission.
    """
    permission_classes = [HasAccess]
    required_permissions = {'permissions.view'}

    def get(self, request):
        return Response({'permissions': PermissionService().permission_stats()})


# ===== STAFF PERMISSIONS =====

@extend_schema(
    tags=['RBAC - Staff'],
    summary='List staff members with their active grants',
    responses={200: OpenApiTypes.OBJECT},
)
class StaffListView(APIView):
    """
    GET /v1/rbac/staff
    """
    permission_classes = [HasAccess]
    required_permissions = {'staff.view'}

    def get(self, request):
        staff = PermissionService().staff_with_permissions()
        return Response({'count': len(staff), 'staff': staff})


class StaffPermissionsView(APIView):
    """
    GET  /v1/rbac/staff/{staff_id}/permissions
    POST /v1/rbac/staff/{staff_id}/permissions
    """
    permission_classes = [HasAccess]

    @extend_schema(
        tags=['RBAC - Staff'],
        summary='Staff permission history',
        description='''
Active permission keys, the grant/revoke history (newest first) and the
staff member's own grant activity.

**Required permission:** `staff.view`
        ''',
        parameters=[
            OpenApiParameter('limit', OpenApiTypes.INT, description='History entries to return (default 50)'),
            OpenApiParameter('days', OpenApiTypes.INT, description='Activity window in days (default 30)'),
        ],
        responses={200: OpenApiTypes.OBJECT},
    )
    @requires_access(permissions=['staff.view'])
    def get(self, request, staff_id):
        try:
            limit = int(request.query_params.get('limit', 50))
            days = int(request.query_params.get('days', 30))
        except ValueError as exc:
            raise ValidationError('limit and days must be integers') from exc

        service = PermissionService()
        return Response({
            'staff_id': str(staff_id),
            'permissions': sorted(service.get_user_permissions(staff_id)),
            'history': service.permission_history(staff_id, limit=limit),
            'activity': service.staff_activity(staff_id, days=days),
        })

    @extend_schema(
        tags=['RBAC - Staff'],
        summary='Grant a permission to a staff member',
        request=GrantPermissionSerializer,
        responses={
            201: StaffPermissionSerializer,
            400: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        },
    )
    @requires_access(permissions=['staff.manage'])
    def post(self, request, staff_id):
        data = _validated(GrantPermissionSerializer, request.data)
        grant = PermissionService().grant_permission(staff_id, data['permission'], granted_by=request.user)
        return Response(StaffPermissionSerializer(grant).data, status=status.HTTP_201_CREATED)


@extend_schema(
    tags=['RBAC - Staff'],
    summary='Revoke a permission from a staff member',
    responses={200: StaffPermissionSerializer, 404: OpenApiTypes.OBJECT},
)
class StaffPermissionRevokeView(APIView):
    """
    DELETE /v1/rbac/staff/{staff_id}/permissions/{key}

    The grant row is kept with ``revoked_at`` set.
    """
    permission_classes = [HasAccess]
    required_permissions = {'staff.manage'}

    def delete(self, request, staff_id, key):
        grant = PermissionService().revoke_permission(staff_id, key, revoked_by=request.user)
        return Response(StaffPermissionSerializer(grant).data)


@extend_schema(
    tags=['RBAC - Staff'],
    summary='Grant or revoke several permissions',
    description='''
Every key is attempted independently; the response lists which
succeeded and why each failure failed.
    ''',
    request=BulkPermissionSerializer,
    responses={200: OpenApiTypes.OBJECT},
    examples=[
        OpenApiExample(
            'Bulk grant',
            value={'action': 'grant', 'permissions': ['houses.view', 'flats.view']},
            request_only=True
        ),
    ]
)
class StaffPermissionBulkView(APIView):
    """
    POST /v1/rbac/staff/{staff_id}/permissions/bulk
    """
    permission_classes = [HasAccess]
    required_permissions = {'staff.manage'}

    def post(self, request, staff_id):
        data = _validated(BulkPermissionSerializer, request.data)
        service = PermissionService()
        if data['action'] == BulkPermissionSerializer.ACTION_GRANT:
            result = service.bulk_grant(staff_id, data['permissions'], granted_by=request.user)
        else:
            result = service.bulk_revoke(staff_id, data['permissions'], revoked_by=request.user)
        return Response(result.to_dict())


@extend_schema(
    tags=['RBAC - Staff'],
    summary='Copy active grants from another staff member',
    request=CopyPermissionsSerializer,
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
)
class StaffPermissionCopyView(APIView):
    """
    POST /v1/rbac/staff/{staff_id}/permissions/copy
    """
    permission_classes = [HasAccess]
    required_permissions = {'staff.manage'}

    def post(self, request, staff_id):
        data = _validated(CopyPermissionsSerializer, request.data)
        result = PermissionService().copy_permissions(data['source_staff_id'], staff_id, granted_by=request.user)
        return Response(result.to_dict())


# ===== CACHE ADMINISTRATION =====

class PermissionCacheView(APIView):
    """
    GET    /v1/rbac/cache
    DELETE /v1/rbac/cache
    """
    permission_classes = [HasAccess]
    required_permissions = {'cache.manage'}

    @extend_schema(tags=['RBAC - Cache'], summary='Permission cache statistics', responses={200: OpenApiTypes.OBJECT})
    def get(self, request):
        return Response(PermissionService().cache.get_stats())

    @extend_schema(tags=['RBAC - Cache'], summary='Clear the permission cache', responses={204: None})
    def delete(self, request):
        PermissionService().cache.invalidate_all()
        logger.info("Permission cache cleared", extra={'user_id': str(request.user.id)})
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema(tags=['RBAC - Cache'], summary='Drop one user from the permission cache', responses={204: None})
class PermissionCacheUserView(APIView):
    """
    DELETE /v1/rbac/cache/users/{user_id}
    """
    permission_classes = [HasAccess]
    required_permissions = {'cache.manage'}

    def delete(self, request, user_id):
        PermissionService().cache.invalidate_user(user_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema(
    tags=['RBAC - Cache'],
    summary='Drop a role and its holders from the permission cache',
    responses={204: None},
)
class PermissionCacheRoleView(APIView):
    """
    DELETE /v1/rbac/cache/roles/{role_id}
    """
    permission_classes = [HasAccess]
    required_permissions = {'cache.manage'}

    def delete(self, request, role_id):
        PermissionService().invalidate_role_holders(role_id)
        return Response(status=status.HTTP_204_NO_CONTENT)
