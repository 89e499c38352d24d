"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Permissions and the grouped catalogue
- Staff members and their individual grants
- Bulk grant/revoke and copy requests
"""
from rest_framework import serializers
from apps.rbac.models import Permission, Role, StaffPermission, User


class PermissionSerializer(serializers.ModelSerializer):
    """Serializer for Permission model."""

    category = serializers.CharField(read_only=True)

    class Meta:
        model = Permission
        fields = ['id', 'key', 'description', 'category']
        read_only_fields = fields


class RoleSerializer(serializers.ModelSerializer):

    class Meta:
        model = Role
        fields = ['id', 'slug', 'name', 'rank', 'description']
        read_only_fields = fields


class UserSummarySerializer(serializers.ModelSerializer):

    class Meta:
        model = User
        fields = ['id', 'name', 'email']
        read_only_fields = fields


class StaffPermissionSerializer(serializers.ModelSerializer):
    """Individual grant, active or revoked."""

    permission = PermissionSerializer(read_only=True)
    granted_by = UserSummarySerializer(read_only=True)
    revoked_by = UserSummarySerializer(read_only=True)
    status = serializers.SerializerMethodField()

    class Meta:
        model = StaffPermission
        fields = [
            'id', 'permission', 'granted_at', 'granted_by',
            'revoked_at', 'revoked_by', 'status',
        ]
        read_only_fields = fields

    def get_status(self, obj):
        return 'active' if obj.is_active else 'revoked'


class GrantPermissionSerializer(serializers.Serializer):
    """Serializer for granting one permission to a staff member."""

    permission = serializers.CharField(required=True, max_length=100)


class BulkPermissionSerializer(serializers.Serializer):
    """
    Serializer for bulk permission changes.

    ``action`` is ``grant`` or ``revoke``; every key is attempted and
    reported individually.
    """

    ACTION_GRANT = 'grant'
    ACTION_REVOKE = 'revoke'

    action = serializers.ChoiceField(choices=[ACTION_GRANT, ACTION_REVOKE])
    permissions = serializers.ListField(
        child=serializers.CharField(max_length=100),
        allow_empty=False,
    )

    def validate_permissions(self, value):
        """Drop duplicates, keeping order."""
        return list(dict.fromkeys(value))


class CopyPermissionsSerializer(serializers.Serializer):
    source_staff_id = serializers.UUIDField(required=True)
