"""
Account serializers for REST API endpoints.

Provides serialization for:
- Registration, login and credential refresh
- User profiles and managed users
- Registration tokens
- Login-as sessions
"""
from rest_framework import serializers

from apps.accounts.models import LoginAsSession, RegistrationToken
from apps.rbac.models import User


# ===== AUTHENTICATION SERIALIZERS =====

class RegisterSerializer(serializers.Serializer):
    """
    Registration input.

    Field rules (name required, password strength, 11 digit phone) are
    enforced by the registration service so every entry point reports
    them the same way.
    """

    name = serializers.CharField(required=False, allow_blank=True, default='')
    email = serializers.CharField(required=False, allow_blank=True, default='')
    password = serializers.CharField(
        required=False,
        allow_blank=True,
        default='',
        write_only=True,
        style={'input_type': 'password'}
    )
    phone = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
    token = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)


class LoginSerializer(serializers.Serializer):
    """Serializer for user login."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )


class RefreshSerializer(serializers.Serializer):
    refresh_token = serializers.CharField(required=True)


class SetPasswordSerializer(serializers.Serializer):
    password = serializers.CharField(required=True, write_only=True, style={'input_type': 'password'})


class GoogleLinkSerializer(serializers.Serializer):
    google_id = serializers.CharField(required=True, max_length=255)


class CredentialsSerializer(serializers.Serializer):
    access_token = serializers.CharField()
    refresh_token = serializers.CharField()
    token_type = serializers.CharField()
    expires_in = serializers.IntegerField()


# ===== USER SERIALIZERS =====

class UserSerializer(serializers.ModelSerializer):
    """Public view of a user."""

    role = serializers.CharField(source='role.slug', read_only=True)
    parent_id = serializers.UUIDField(read_only=True)
    has_password = serializers.BooleanField(read_only=True)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'name', 'phone', 'role', 'status', 'parent_id',
            'has_password', 'last_login_at', 'created_at',
        ]
        read_only_fields = fields


class ManagedUserSerializer(UserSerializer):
    """Managed user, including administrative metadata."""

    class Meta(UserSerializer.Meta):
        fields = UserSerializer.Meta.fields + ['metadata', 'updated_at']
        read_only_fields = fields


class ManagedUserCreateSerializer(serializers.Serializer):
    email = serializers.EmailField(required=True)
    role = serializers.CharField(required=True, max_length=50)
    password = serializers.CharField(required=False, allow_blank=True, write_only=True)
    name = serializers.CharField(required=False, allow_blank=True, default='', max_length=255)
    phone = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
    house_limit = serializers.IntegerField(required=False, allow_null=True, min_value=0, default=None)
    metadata = serializers.DictField(required=False, default=dict)


class UserStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=User.STATUS_CHOICES)
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)


class UserLimitsSerializer(serializers.Serializer):
    house_limit = serializers.IntegerField(required=False, allow_null=True, min_value=0, default=None)


# ===== REGISTRATION TOKEN SERIALIZERS =====

class RegistrationTokenSerializer(serializers.ModelSerializer):
    """Registration token with its shareable link."""

    role = serializers.CharField(source='role.slug', read_only=True)
    created_by = serializers.EmailField(source='created_by.email', read_only=True)
    used_by = serializers.SerializerMethodField()
    registration_link = serializers.CharField(read_only=True)
    is_expired = serializers.SerializerMethodField()

    class Meta:
        model = RegistrationToken
        fields = [
            'id', 'token', 'email', 'role', 'created_by', 'expires_at',
            'used', 'used_at', 'used_by', 'registration_link', 'is_expired',
            'metadata', 'created_at',
        ]
        read_only_fields = fields

    def get_used_by(self, obj):
        if obj.used_by_id is None:
            return None
        return {'id': str(obj.used_by_id), 'email': obj.used_by.email}

    def get_is_expired(self, obj):
        return obj.is_expired()


class RegistrationTokenCreateSerializer(serializers.Serializer):
    email = serializers.EmailField(required=False, allow_null=True, default=None)
    role = serializers.CharField(required=False, allow_null=True, default=None, max_length=50)
    expires_in_hours = serializers.IntegerField(required=False, allow_null=True, default=None)
    metadata = serializers.DictField(required=False, default=dict)


class RegistrationTokenValidationSerializer(serializers.Serializer):
    """Public view of a token that passed validation."""

    email = serializers.EmailField(allow_null=True)
    role = serializers.CharField(source='role.slug')
    expires_at = serializers.DateTimeField()


# ===== LOGIN-AS SERIALIZERS =====

class LoginAsSerializer(serializers.Serializer):
    target_user_id = serializers.UUIDField(required=True)
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255, default=None)


class LoginAsSessionSerializer(serializers.ModelSerializer):
    actor = UserSerializer(read_only=True)
    target = UserSerializer(read_only=True)
    original_role = serializers.CharField(source='original_role.slug', read_only=True)

    class Meta:
        model = LoginAsSession
        fields = ['id', 'actor', 'target', 'original_role', 'reason', 'expires_at', 'created_at']
        read_only_fields = fields
