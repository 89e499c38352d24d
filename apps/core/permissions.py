"""
DRF permission classes backed by the access decision point.

Views declare what they need with ``required_roles`` and/or
``required_permissions`` (class attributes or the ``requires_access``
decorator on handler methods); ``HasAccess`` evaluates them for the
authenticated user.
"""
import logging
from functools import wraps

from rest_framework.permissions import BasePermission

from apps.core.exceptions import AccessDenied, AuthenticationError
from apps.core.logging import SecurityLogger
from apps.rbac.access import AccessDecisionPoint, AccessRequirement
from apps.rbac.services import PermissionService

logger = logging.getLogger(__name__)


def _requirement_for(request, view):
    handler = getattr(view, request.method.lower(), None)
    roles = getattr(handler, 'required_roles', None)
    permissions = getattr(handler, 'required_permissions', None)
    if roles is None and permissions is None:
        roles = getattr(view, 'required_roles', None)
        permissions = getattr(view, 'required_permissions', None)
    return AccessRequirement.of(roles=roles, permissions=permissions)


class HasAccess(BasePermission):
    """
    Allow the request when the user satisfies the view's requirement.

    Denials raise ``AccessDenied`` so the client receives the structured
    reason (wrong role, or exactly which permissions are missing) rather
    than a bare 403.

    Usage:
        class StaffListView(APIView):
            permission_classes = [HasAccess]
            required_roles = {'web_owner'}
            required_permissions = {'staff.view'}
    """

    decision_point = AccessDecisionPoint()

    def has_permission(self, request, view):
        user = getattr(request, 'user', None)
        if user is None or not user.is_authenticated:
            raise AuthenticationError('Authentication required')

        requirement = _requirement_for(request, view)
        if not requirement:
            return True

        role_slug = user.role.slug if user.role_id else None
        decision = self.decision_point.decide(
            role_slug,
            lambda: PermissionService().get_user_permissions(user.id),
            requirement,
        )

        if decision.allowed:
            logger.debug(
                "Access granted",
                extra={
                    'user_id': str(user.id),
                    'view': view.__class__.__name__,
                    'method': request.method,
                }
            )
            return True

        SecurityLogger.log_access_denied(
            user,
            decision,
            ip_address=request.META.get('REMOTE_ADDR'),
            path=request.path,
        )
        raise AccessDenied(decision.message, details=decision.to_details(), code=decision.code)


def requires_access(roles=None, permissions=None):
    """
    Declare required roles and/or permissions on a view class or handler.

    Usage:
        class StaffPermissionsView(APIView):
            permission_classes = [HasAccess]

            @requires_access(permissions=['staff.view'])
            def get(self, request, staff_id):
                ...

            @requires_access(roles=['web_owner'], permissions=['staff.manage'])
            def post(self, request, staff_id):
                ...
    """
    requirement = AccessRequirement.of(roles=roles, permissions=permissions)

    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.required_roles = set(requirement.roles)
            view_or_method.required_permissions = set(requirement.permissions)
            return view_or_method

        @wraps(view_or_method)
        def wrapped(*args, **kwargs):
            return view_or_method(*args, **kwargs)

        wrapped.required_roles = set(requirement.roles)
        wrapped.required_permissions = set(requirement.permissions)
        return wrapped

    return decorator
