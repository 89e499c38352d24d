"""
Account REST API views.

Implements endpoints for:
- Registration, login, credential refresh and profile
- Registration tokens (issue, list, validate, revoke)
- Login-as sessions (start, exit, list)
- Managed users (list, create, status and limits)
"""
import logging

from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.accounts.serializers import (
    CredentialsSerializer, GoogleLinkSerializer, LoginAsSerializer,
    LoginAsSessionSerializer, LoginSerializer, ManagedUserCreateSerializer,
    ManagedUserSerializer, RefreshSerializer, RegisterSerializer,
    RegistrationTokenCreateSerializer, RegistrationTokenSerializer,
    RegistrationTokenValidationSerializer, SetPasswordSerializer,
    UserLimitsSerializer, UserSerializer, UserStatusSerializer,
)
from apps.accounts.services import (
    AuthService, ImpersonationService, RegistrationTokenService,
    UserAdminService,
)
from apps.core.exceptions import ValidationError
from apps.core.permissions import HasAccess, requires_access
from apps.rbac.services import PermissionService

logger = logging.getLogger(__name__)


def _validated(serializer_class, data):
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        raise ValidationError('Validation error', details=serializer.errors)
    return serializer.validated_data


def _client_ip(request):
    return request.META.get('REMOTE_ADDR', 'unknown')


def _session_response(result, status_code=status.HTTP_200_OK):
    body = {
        'user': UserSerializer(result['user']).data,
        'tokens': result['tokens'],
        'permissions': result['permissions'],
    }
    if 'registration_method' in result:
        body['registration_method'] = result['registration_method']
    return Response(body, status=status_code)


# ===== AUTHENTICATION =====

@extend_schema(
    tags=['Authentication'],
    summary='Register a new account',
    description='''
Create an account with email and password.

With a `token` the account receives the token's role and is placed under
the user who issued it. Without one, registration only works when public
registration is enabled.

Rate limited to 3 requests per hour per IP.
    ''',
    request=RegisterSerializer,
    responses={201: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    examples=[
        OpenApiExample(
            'Register with token',
            value={
                'name': 'Jane Caretaker',
                'email': 'jane@example.com',
                'password': 'SecurePass123',
                'phone': '08012345678',
                'token': '9f2c...e1',
            },
            request_only=True
        ),
    ]
)
class RegisterView(APIView):
    """
    POST /v1/auth/register

    No authentication required.
    """
    authentication_classes = []
    permission_classes = []

    @method_decorator(ratelimit(key='ip', rate='3/h', method='POST'))
    def post(self, request):
        data = _validated(RegisterSerializer, request.data)
        result = AuthService.register(data)
        return _session_response(result, status.HTTP_201_CREATED)


@extend_schema(
    tags=['Authentication'],
    summary='Login with email and password',
    request=LoginSerializer,
    responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 429: OpenApiTypes.OBJECT},
)
class LoginView(APIView):
    """
    POST /v1/auth/login

    Rate limited to 5 requests per minute per IP and 10 per hour per email.
    """
    authentication_classes = []
    permission_classes = []

    @method_decorator(ratelimit(key='ip', rate='5/m', method='POST'))
    @method_decorator(ratelimit(key='post:email', rate='10/h', method='POST'))
    def post(self, request):
        data = _validated(LoginSerializer, request.data)
        result = AuthService.login(data['email'], data['password'], ip_address=_client_ip(request))
        return _session_response(result)


@extend_schema(
    tags=['Authentication'],
    summary='Refresh credentials',
    request=RefreshSerializer,
    responses={200: CredentialsSerializer, 401: OpenApiTypes.OBJECT},
)
class RefreshView(APIView):
    """
    POST /v1/auth/refresh

    Exchanges a refresh token for a new access/refresh pair.
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        data = _validated(RefreshSerializer, request.data)
        return Response(AuthService.refresh(data['refresh_token']))


@extend_schema(
    tags=['Authentication'],
    summary='Current user profile',
    description='''
Return the authenticated user, their effective permission keys and,
when acting through a login-as session, the session and original actor.
    ''',
    responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT},
)
class MeView(APIView):
    """
    GET /v1/auth/me
    """
    permission_classes = [HasAccess]

    def get(self, request):
        user = request.user
        payload = request.auth or {}
        body = {
            'user': UserSerializer(user).data,
            'permissions': sorted(PermissionService().get_user_permissions(user.id)),
            'login_as': None,
        }
        if payload.get('login_as_session'):
            body['login_as'] = {
                'session_id': payload['login_as_session'],
                'actor_id': payload.get('actor_id'),
            }
        return Response(body)


@extend_schema(
    tags=['Authentication'],
    summary='Set password',
    request=SetPasswordSerializer,
    responses={200: UserSerializer, 400: OpenApiTypes.OBJECT},
)
class SetPasswordView(APIView):
    """
    POST /v1/auth/password

    Lets accounts created through Google set a password.
    """
    permission_classes = [HasAccess]

    def post(self, request):
        data = _validated(SetPasswordSerializer, request.data)
        user = AuthService.set_password(request.user.id, data['password'])
        return Response(UserSerializer(user).data)


@extend_schema(
    tags=['Authentication'],
    summary='Link Google account',
    request=GoogleLinkSerializer,
    responses={200: UserSerializer, 409: OpenApiTypes.OBJECT},
)
class GoogleLinkView(APIView):
    """
    POST /v1/auth/google/link
    """
    permission_classes = [HasAccess]

    def post(self, request):
        data = _validated(GoogleLinkSerializer, request.data)
        user = AuthService.link_google_account(request.user.id, data['google_id'])
        return Response(UserSerializer(user).data)


# ===== REGISTRATION TOKENS =====

class RegistrationTokenListView(APIView):
    """
    GET  /v1/auth/registration-tokens
    POST /v1/auth/registration-tokens

    Only lists tokens issued by the caller. Issuing requires out-ranking
    the requested role.
    """
    permission_classes = [HasAccess]

    @extend_schema(
        tags=['Registration Tokens'],
        summary='List issued registration tokens',
        parameters=[
            OpenApiParameter('used', OpenApiTypes.BOOL, description='Filter by used state'),
            OpenApiParameter('role', OpenApiTypes.STR, description='Filter by role slug'),
            OpenApiParameter('email', OpenApiTypes.STR, description='Filter by email (contains)'),
        ],
        responses={200: RegistrationTokenSerializer(many=True)},
    )
    @requires_access(permissions=['tokens.view'])
    def get(self, request):
        used = request.query_params.get('used')
        if used is not None:
            used = used.lower() in ('1', 'true', 'yes')
        tokens = RegistrationTokenService.list_tokens(
            request.user.id,
            used=used,
            role_slug=request.query_params.get('role'),
            email=request.query_params.get('email'),
        )
        return Response({
            'count': tokens.count(),
            'tokens': RegistrationTokenSerializer(tokens, many=True).data,
        })

    @extend_schema(
        tags=['Registration Tokens'],
        summary='Issue a registration token',
        request=RegistrationTokenCreateSerializer,
        responses={201: RegistrationTokenSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
    @requires_access(permissions=['tokens.create'])
    def post(self, request):
        data = _validated(RegistrationTokenCreateSerializer, request.data)
        record = RegistrationTokenService.generate_token(
            request.user.id,
            email=data['email'],
            role_slug=data['role'],
            expires_in_hours=data['expires_in_hours'],
            metadata=data['metadata'],
        )
        return Response(RegistrationTokenSerializer(record).data, status=status.HTTP_201_CREATED)


@extend_schema(
    tags=['Registration Tokens'],
    summary='Validate a registration token',
    parameters=[
        OpenApiParameter('token', OpenApiTypes.STR, required=True),
        OpenApiParameter('email', OpenApiTypes.STR, description='Email the registrant will use'),
    ],
    responses={200: RegistrationTokenValidationSerializer, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
)
class RegistrationTokenValidateView(APIView):
    """
    GET /v1/auth/registration-tokens/validate?token=...

    No authentication required. Never consumes the token.
    """
    authentication_classes = []
    permission_classes = []

    @method_decorator(ratelimit(key='ip', rate='30/m', method='GET'))
    def get(self, request):
        record = RegistrationTokenService.validate_token(
            request.query_params.get('token', ''),
            email=request.query_params.get('email'),
        )
        return Response({'valid': True, 'token': RegistrationTokenValidationSerializer(record).data})


@extend_schema(
    tags=['Registration Tokens'],
    summary='Revoke an unused registration token',
    responses={204: None, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
)
class RegistrationTokenDetailView(APIView):
    """
    DELETE /v1/auth/registration-tokens/{token_id}
    """
    permission_classes = [HasAccess]
    required_permissions = {'tokens.create'}

    def delete(self, request, token_id):
        RegistrationTokenService.revoke_token(token_id, request.user.id)
        return Response(status=status.HTTP_204_NO_CONTENT)


# ===== LOGIN-AS =====

@extend_schema(
    tags=['Login As'],
    summary='Start acting as another user',
    description='''
Returns credentials for the target user. The access token carries the
session id and expires no later than the session (2 hours by default).
    ''',
    request=LoginAsSerializer,
    responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
class LoginAsView(APIView):
    """
    POST /v1/auth/login-as
    """
    permission_classes = [HasAccess]
    required_permissions = {'users.login_as'}

    def post(self, request):
        data = _validated(LoginAsSerializer, request.data)
        payload = request.auth or {}
        result = ImpersonationService().login_as(
            request.user.id, data['target_user_id'], data['reason'],
            within_session=payload.get('login_as_session'),
        )
        session = result['session']
        return Response({
            'user': UserSerializer(result['user']).data,
            'tokens': result['tokens'],
            'login_as': {
                'session_id': str(session.id),
                'actor_id': str(session.actor_id),
                'original_role': session.original_role.slug,
                'reason': session.reason,
                'expires_at': session.expires_at,
            },
        })


@extend_schema(
    tags=['Login As'],
    summary='Exit a login-as session',
    responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
class LoginAsExitView(APIView):
    """
    POST /v1/auth/login-as/{session_id}/exit

    Called with the impersonation token; the requester is the actor
    recorded in it.
    """
    permission_classes = [HasAccess]

    def post(self, request, session_id):
        payload = request.auth or {}
        requester_id = payload.get('actor_id') or request.user.id
        result = ImpersonationService().exit_login_as(session_id, requester_id)
        return Response({
            'user': UserSerializer(result['user']).data,
            'tokens': result['tokens'],
        })


@extend_schema(
    tags=['Login As'],
    summary='List active login-as sessions started by the caller',
    responses={200: LoginAsSessionSerializer(many=True)},
)
class LoginAsSessionListView(APIView):
    """
    GET /v1/auth/login-as/sessions
    """
    permission_classes = [HasAccess]
    required_permissions = {'users.login_as'}

    def get(self, request):
        sessions = ImpersonationService.active_sessions(request.user.id)
        return Response({'sessions': LoginAsSessionSerializer(sessions, many=True).data})


# ===== MANAGED USERS =====

class ManagedUserListView(APIView):
    """
    GET  /v1/auth/users
    POST /v1/auth/users
    """
    permission_classes = [HasAccess]

    @extend_schema(
        tags=['Users'],
        summary='List users managed by the caller',
        parameters=[OpenApiParameter('role', OpenApiTypes.STR, description='Filter by role slug')],
        responses={200: ManagedUserSerializer(many=True)},
    )
    @requires_access(permissions=['users.view'])
    def get(self, request):
        users = UserAdminService().get_managed_users(request.user.id, role_slug=request.query_params.get('role'))
        return Response({
            'count': len(users),
            'users': ManagedUserSerializer(users, many=True).data,
        })

    @extend_schema(
        tags=['Users'],
        summary='Create a managed user',
        request=ManagedUserCreateSerializer,
        responses={201: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    )
    @requires_access(permissions=['users.create'])
    def post(self, request):
        data = _validated(ManagedUserCreateSerializer, request.data)
        result = UserAdminService().create_user_account(
            request.user.id,
            data['email'],
            data['role'],
            password=data.get('password') or None,
            name=data['name'],
            phone=data['phone'],
            metadata=data['metadata'],
            house_limit=data['house_limit'],
        )
        body = {'user': ManagedUserSerializer(result['user']).data}
        if result['password']:
            body['generated_password'] = result['password']
        return Response(body, status=status.HTTP_201_CREATED)


@extend_schema(
    tags=['Users'],
    summary='Change a managed user status',
    request=UserStatusSerializer,
    responses={200: ManagedUserSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
)
class UserStatusView(APIView):
    """
    PATCH /v1/auth/users/{user_id}/status
    """
    permission_classes = [HasAccess]
    required_permissions = {'users.manage'}

    def patch(self, request, user_id):
        data = _validated(UserStatusSerializer, request.data)
        user = UserAdminService().update_user_status(request.user.id, user_id, data['status'], data['reason'])
        return Response(ManagedUserSerializer(user).data)


@extend_schema(
    tags=['Users'],
    summary='Change a managed user limits',
    request=UserLimitsSerializer,
    responses={200: ManagedUserSerializer, 403: OpenApiTypes.OBJECT},
)
class UserLimitsView(APIView):
    """
    PATCH /v1/auth/users/{user_id}/limits
    """
    permission_classes = [HasAccess]
    required_roles = {'web_owner', 'developer', 'staff'}
    required_permissions = {'users.manage'}

    def patch(self, request, user_id):
        data = _validated(UserLimitsSerializer, request.data)
        user = UserAdminService().update_user_limits(request.user.id, user_id, house_limit=data['house_limit'])
        return Response(ManagedUserSerializer(user).data)
