"""
Exception hierarchy and DRF exception handler.

Every service-layer failure is a PropdeskException subclass carrying a
human readable message, a machine readable ``code`` and an HTTP
``status_code``. The handler below renders them as::

    {"error": "...", "code": "...", "details": {...}, "request_id": "..."}
"""
import logging
from rest_framework.response import Response
from rest_framework import status
from django_ratelimit.exceptions import Ratelimited

logger = logging.getLogger(__name__)


class PropdeskException(Exception):
    """Base exception for Propdesk-specific errors."""

    status_code = 400
    code = 'ERROR'

    def __init__(self, message=None, details=None):
        self.message = message or self.default_message()
        self.details = details or {}
        super().__init__(self.message)

    @classmethod
    def default_message(cls):
        return cls.__doc__.strip().splitlines()[0] if cls.__doc__ else cls.__name__

    def to_payload(self):
        payload = {
            'error': self.message,
            'code': self.code,
        }
        if self.details:
            payload['details'] = self.details
        return payload


# Not found -----------------------------------------------------------------

class NotFound(PropdeskException):
    """Referenced entity does not exist."""
    status_code = 404
    code = 'NOT_FOUND'


class UserNotFound(NotFound):
    """User not found."""
    code = 'USER_NOT_FOUND'


class ActorNotFound(NotFound):
    """Acting user not found."""
    code = 'ACTOR_NOT_FOUND'


class TargetNotFound(NotFound):
    """Target user not found."""
    code = 'TARGET_NOT_FOUND'


class RoleNotFound(NotFound):
    """Role not found."""
    code = 'ROLE_NOT_FOUND'


class PermissionNotFound(NotFound):
    """Permission not found."""
    code = 'PERMISSION_NOT_FOUND'


class GrantNotFound(NotFound):
    """Permission is not currently granted to this user."""
    code = 'GRANT_NOT_FOUND'


class TokenNotFound(NotFound):
    """Registration token not found."""
    code = 'TOKEN_NOT_FOUND'


class SessionNotFound(NotFound):
    """Login-as session not found."""
    code = 'SESSION_NOT_FOUND'


class InvalidToken(NotFound):
    """Invalid registration token."""
    status_code = 400
    code = 'INVALID_TOKEN'


# Already exists -------------------------------------------------------------

class AlreadyExists(PropdeskException):
    """Record already exists."""
    status_code = 409
    code = 'ALREADY_EXISTS'


class AlreadyGranted(AlreadyExists):
    """Permission already granted to this user."""
    code = 'ALREADY_GRANTED'


# Invalid state --------------------------------------------------------------

class InvalidState(PropdeskException):
    """Operation is not allowed in the record's current state."""
    status_code = 409
    code = 'INVALID_STATE'


class TokenUsed(InvalidState):
    """Registration token has already been used."""
    code = 'TOKEN_USED'


class TokenExpired(InvalidState):
    """Registration token has expired."""
    code = 'TOKEN_EXPIRED'


class AlreadyUsed(InvalidState):
    """Cannot revoke a token that has already been used."""
    code = 'ALREADY_USED'


class SessionExpired(InvalidState):
    """Login-as session has expired."""
    status_code = 401
    code = 'SESSION_EXPIRED'


# Authorization --------------------------------------------------------------

class AuthenticationError(PropdeskException):
    """Authentication failed."""
    status_code = 401
    code = 'AUTHENTICATION_FAILED'


class AccountInactive(AuthenticationError):
    """Account is not active. Please contact administrator."""
    status_code = 403
    code = 'ACCOUNT_INACTIVE'


class PermissionDeniedError(PropdeskException):
    """Insufficient permissions."""
    status_code = 403
    code = 'PERMISSION_DENIED'


class RegistrationDisabled(PermissionDeniedError):
    """Public registration is disabled. Please use a registration token."""
    code = 'REGISTRATION_DISABLED'


class InsufficientRank(PermissionDeniedError):
    """Cannot act on a role with equal or higher rank."""
    code = 'INSUFFICIENT_RANK'


class OutOfHierarchy(PermissionDeniedError):
    """User is not within your hierarchy."""
    code = 'OUT_OF_HIERARCHY'


class RoleNotAllowed(PermissionDeniedError):
    """Not allowed to act on users with this role."""
    code = 'ROLE_NOT_ALLOWED'


class NotPermitted(PermissionDeniedError):
    """Login-as is not permitted for your role."""
    code = 'NOT_PERMITTED'


class NotOwner(PermissionDeniedError):
    """You can only manage tokens you created."""
    code = 'NOT_OWNER'


class NotSessionOwner(PermissionDeniedError):
    """Only the user who started this session can end it."""
    code = 'NOT_SESSION_OWNER'


class AccessDenied(PermissionDeniedError):
    """Access denied."""

    def __init__(self, message=None, details=None, code=None):
        if code:
            self.code = code
        super().__init__(message, details)


# Validation -----------------------------------------------------------------

class ValidationError(PropdeskException):
    """Input validation failed."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class NotStaffMember(ValidationError):
    """Individual permissions can only be granted to staff members."""
    code = 'NOT_STAFF_MEMBER'


class HierarchyDepthExceeded(ValidationError):
    """User hierarchy is deeper than allowed or contains a cycle."""
    code = 'HIERARCHY_DEPTH_EXCEEDED'


def _rate_limited_response(exc, request, request_id):
    from apps.core.logging import SecurityLogger

    ip_address = request.META.get('REMOTE_ADDR', 'unknown') if request else 'unknown'
    email = None
    if request is not None and isinstance(getattr(request, 'data', None), dict):
        email = request.data.get('email')

    retry_after = 60
    if request is not None and '/auth/register' in request.path:
        retry_after = 3600

    SecurityLogger.log_rate_limit_exceeded(
        endpoint=request.path if request else 'unknown',
        ip_address=ip_address,
        user_email=email,
    )

    response = Response(
        {
            'error': 'Rate limit exceeded. Please try again later.',
            'code': 'RATE_LIMIT_EXCEEDED',
            'request_id': request_id,
            'retry_after': retry_after,
        },
        status=status.HTTP_429_TOO_MANY_REQUESTS
    )
    response['Retry-After'] = str(retry_after)
    return response


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, Ratelimited):
        return _rate_limited_response(exc, request, request_id)

    if isinstance(exc, PropdeskException):
        log_method = logger.error if exc.status_code >= 500 else logger.info
        log_method(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'error_code': exc.code,
                'status_code': exc.status_code,
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            }
        )
        data = exc.to_payload()
        data['request_id'] = request_id
        return Response(data, status=exc.status_code)

    # rest_framework.views loads the authentication classes, which import this module
    from rest_framework.views import exception_handler

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'exception': str(exc),
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=True
        )
        return Response(
            {
                'error': 'Internal server error',
                'code': 'INTERNAL_ERROR',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    # Add request_id to all error responses
    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
