"""
Access decision point.

Every request-time authorization check goes through
``AccessDecisionPoint.decide``. A check is declared as a set of
acceptable role slugs, a set of required permission keys, or both:

    requirement = AccessRequirement.of(roles=['staff'], permissions=['houses.create'])
    decision = AccessDecisionPoint().decide(user.role.slug, permissions, requirement)

Members of the always-allow roles pass every check without their
permissions being resolved. Note that this makes ``resolve()`` an
incomplete picture of what those roles can do: they hold no keys
explicitly.
"""
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Iterable, Optional, Union

from apps.core.exceptions import AccessDenied
from apps.rbac.models import Role

ALWAYS_ALLOW_ROLES = frozenset({Role.WEB_OWNER, Role.DEVELOPER})

ROLE_NOT_ALLOWED = 'ROLE_NOT_ALLOWED'
PERMISSION_DENIED = 'PERMISSION_DENIED'

PermissionSource = Union[Iterable[str], Callable[[], Iterable[str]]]


@dataclass(frozen=True)
class AccessRequirement:
    roles: FrozenSet[str] = frozenset()
    permissions: FrozenSet[str] = frozenset()

    @classmethod
    def of(cls, roles: Optional[Iterable[str]] = None, permissions: Optional[Iterable[str]] = None):
        if isinstance(roles, str):
            roles = [roles]
        if isinstance(permissions, str):
            permissions = [permissions]
        return cls(frozenset(roles or ()), frozenset(permissions or ()))

    def __bool__(self):
        return bool(self.roles or self.permissions)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    role: Optional[str]
    code: Optional[str] = None
    message: str = ''
    required_roles: FrozenSet[str] = frozenset()
    required_permissions: FrozenSet[str] = frozenset()
    missing_permissions: FrozenSet[str] = field(default_factory=frozenset)

    def __bool__(self):
        return self.allowed

    def to_details(self) -> dict:
        details = {'current_role': self.role}
        if self.required_roles:
            details['required_roles'] = sorted(self.required_roles)
        if self.required_permissions:
            details['required_permissions'] = sorted(self.required_permissions)
        if self.missing_permissions:
            details['missing_permissions'] = sorted(self.missing_permissions)
        return details


class AccessDecisionPoint:
    """
    Combines role and permission checks into an allow/deny verdict.

    ``decide`` has no side effects; ``enforce`` raises AccessDenied with
    the decision details when the verdict is deny.
    """

    def __init__(self, always_allow: Iterable[str] = ALWAYS_ALLOW_ROLES):
        self.always_allow = frozenset(always_allow)

    def decide(self, role_slug: Optional[str], permissions: PermissionSource,
               requirement: AccessRequirement) -> AccessDecision:
        """
        Args:
            role_slug: the identity's role
            permissions: resolved permission keys, or a zero-argument
                callable producing them (only called when needed)
            requirement: what the operation demands
        """
        if role_slug in self.always_allow or not requirement:
            return AccessDecision(allowed=True, role=role_slug)

        role_ok = not requirement.roles or role_slug in requirement.roles

        missing = frozenset()
        if requirement.permissions:
            held = permissions() if callable(permissions) else permissions
            missing = requirement.permissions - frozenset(held)

        if role_ok and not missing:
            return AccessDecision(allowed=True, role=role_slug)

        if not role_ok:
            code = ROLE_NOT_ALLOWED
            message = f"Access denied. Required roles: {', '.join(sorted(requirement.roles))}"
        else:
            code = PERMISSION_DENIED
            message = f"Missing required permissions: {', '.join(sorted(missing))}"

        return AccessDecision(
            allowed=False,
            role=role_slug,
            code=code,
            message=message,
            required_roles=requirement.roles,
            required_permissions=requirement.permissions,
            missing_permissions=missing,
        )

    def enforce(self, role_slug, permissions: PermissionSource, requirement: AccessRequirement) -> AccessDecision:
        decision = self.decide(role_slug, permissions, requirement)
        if not decision.allowed:
            raise AccessDenied(decision.message, details=decision.to_details(), code=decision.code)
        return decision
