"""
Permission resolution and staff permission management.

A user's effective permissions are the keys granted to their role plus
their active individual (staff) grants. Resolved sets are memoized in
the injected PermissionCache; every mutation here invalidates the
affected entries before returning.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, FrozenSet, Iterable, List, Optional

from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.utils import timezone

from apps.core.exceptions import (
    AlreadyGranted, GrantNotFound, NotStaffMember, PermissionNotFound,
    PropdeskException, RoleNotFound, UserNotFound, ValidationError,
)
from apps.rbac.cache import get_permission_cache
from apps.rbac.models import (
    Permission, Role, RolePermission, StaffPermission, User,
)

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Per-item outcome of a bulk permission operation."""

    succeeded: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    def add_failure(self, key, exc):
        self.failed.append({'permission': key, 'error': exc.message, 'code': exc.code})

    def to_dict(self):
        return {
            'succeeded': self.succeeded,
            'failed': self.failed,
            'summary': {
                'total': len(self.succeeded) + len(self.failed),
                'succeeded': len(self.succeeded),
                'failed': len(self.failed),
            },
        }


class PermissionService:
    """
    Resolves and administers permissions.

    Args:
        cache: permission cache to memoize through; defaults to the
            process-wide instance from ``get_permission_cache()``.
    """

    def __init__(self, cache=None):
        self.cache = cache if cache is not None else get_permission_cache()

    # Resolution --------------------------------------------------------

    def resolve_user_permissions(self, user_id) -> FrozenSet[str]:
        """
        Compute a user's effective permission keys, bypassing the cache.

        Unknown users resolve to the empty set.
        """
        role_id = User.objects.filter(pk=user_id).values_list('role_id', flat=True).first()
        if role_id is None:
            return frozenset()

        role_keys = RolePermission.objects.filter(role_id=role_id).values_list('permission__key', flat=True)
        grant_keys = StaffPermission.objects.active().for_user(user_id).values_list('permission__key', flat=True)
        return frozenset(role_keys) | frozenset(grant_keys)

    def get_user_permissions(self, user_id) -> FrozenSet[str]:
        return self.cache.get_user_permissions(user_id, lambda: self.resolve_user_permissions(user_id))

    def get_role_permissions(self, role_id) -> FrozenSet[str]:
        def resolve():
            return RolePermission.objects.filter(role_id=role_id).values_list('permission__key', flat=True)
        return self.cache.get_role_permissions(role_id, resolve)

    def has_permission(self, user_id, key: str) -> bool:
        return key in self.get_user_permissions(user_id)

    def batch_check(self, user_ids: Iterable, key: str) -> Dict[str, bool]:
        """Check one permission for several users."""
        return {str(user_id): self.has_permission(user_id, key) for user_id in user_ids}

    def get_all_permissions(self):
        """The full permission catalogue as dicts, cached."""
        def resolve():
            return [
                {'id': str(perm['id']), 'key': perm['key'], 'description': perm['description']}
                for perm in Permission.objects.values('id', 'key', 'description')
            ]
        return self.cache.get_all_permissions(resolve)

    def grouped_permissions(self) -> Dict[str, list]:
        """Permission catalogue grouped by the namespace before the first dot."""
        grouped = {}
        for perm in self.get_all_permissions():
            grouped.setdefault(perm['key'].split('.', 1)[0], []).append(perm)
        return grouped

    # Individual grants -------------------------------------------------

    def _get_staff_member(self, staff_id) -> User:
        user = User.objects.select_related('role').filter(pk=staff_id).first()
        if user is None:
            raise UserNotFound('Staff member not found', details={'user_id': str(staff_id)})
        return user

    def _get_permission(self, key) -> Permission:
        permission = Permission.objects.by_key(key)
        if permission is None:
            raise PermissionNotFound(f"Permission '{key}' does not exist", details={'permission': key})
        return permission

    def grant_permission(self, staff_id, key: str, granted_by: Optional[User] = None) -> StaffPermission:
        """
        Grant an individual permission to a staff member.

        Raises:
            UserNotFound: staff member does not exist
            NotStaffMember: user's role is not ``staff``
            PermissionNotFound: unknown permission key
            AlreadyGranted: an active grant already exists
        """
        staff = self._get_staff_member(staff_id)
        if staff.role.slug != Role.STAFF:
            raise NotStaffMember('User is not a staff member', details={'user_id': str(staff_id), 'role': staff.role.slug})

        permission = self._get_permission(key)

        if StaffPermission.objects.active().filter(user=staff, permission=permission).exists():
            raise AlreadyGranted(
                'Permission already granted to this staff member',
                details={'user_id': str(staff_id), 'permission': key},
            )

        try:
            with transaction.atomic():
                grant = StaffPermission.objects.create(
                    user=staff,
                    permission=permission,
                    granted_by=granted_by,
                )
        except IntegrityError as exc:
            # Concurrent grant won the race on the active-grant constraint
            raise AlreadyGranted(
                'Permission already granted to this staff member',
                details={'user_id': str(staff_id), 'permission': key},
            ) from exc

        self.cache.invalidate_user(staff.id)

        logger.info(
            f"Permission granted: {key}",
            extra={
                'user_id': str(staff.id),
                'permission': key,
                'granted_by': str(granted_by.id) if granted_by else None,
            }
        )
        return grant

    def revoke_permission(self, staff_id, key: str, revoked_by: Optional[User] = None) -> StaffPermission:
        """
        Revoke an active individual grant. The row is kept as history.

        Raises:
            GrantNotFound: no active grant for (staff, key)
        """
        grant = (
            StaffPermission.objects.active()
            .select_related('permission')
            .filter(user_id=staff_id, permission__key=key)
            .first()
        )
        if grant is None:
            raise GrantNotFound(
                'Active permission not found',
                details={'user_id': str(staff_id), 'permission': key},
            )

        grant.revoke(revoked_by)
        self.cache.invalidate_user(staff_id)

        logger.info(
            f"Permission revoked: {key}",
            extra={
                'user_id': str(staff_id),
                'permission': key,
                'revoked_by': str(revoked_by.id) if revoked_by else None,
            }
        )
        return grant

    def bulk_grant(self, staff_id, keys: Iterable[str], granted_by: Optional[User] = None) -> BatchResult:
        result = BatchResult()
        for key in keys:
            try:
                self.grant_permission(staff_id, key, granted_by)
            except PropdeskException as exc:
                result.add_failure(key, exc)
            else:
                result.succeeded.append(key)
        return result

    def bulk_revoke(self, staff_id, keys: Iterable[str], revoked_by: Optional[User] = None) -> BatchResult:
        result = BatchResult()
        for key in keys:
            try:
                self.revoke_permission(staff_id, key, revoked_by)
            except PropdeskException as exc:
                result.add_failure(key, exc)
            else:
                result.succeeded.append(key)
        return result

    def copy_permissions(self, source_id, target_id, granted_by: Optional[User] = None) -> BatchResult:
        """
        Grant the target every permission the source actively holds.

        Raises:
            ValidationError: source and target are the same user, or the
                source has nothing to copy
        """
        if str(source_id) == str(target_id):
            raise ValidationError('Source and target staff members cannot be the same')

        keys = list(
            StaffPermission.objects.active().for_user(source_id)
            .order_by('permission__key')
            .values_list('permission__key', flat=True)
        )
        if not keys:
            raise ValidationError(
                'Source staff has no active permissions to copy',
                details={'source_id': str(source_id)},
            )
        return self.bulk_grant(target_id, keys, granted_by)

    # Role permissions ---------------------------------------------------

    def assign_role_permission(self, role_slug: str, key: str) -> RolePermission:
        """Give every holder of the role a permission (idempotent)."""
        role = Role.objects.by_slug(role_slug)
        if role is None:
            raise RoleNotFound(f"Role '{role_slug}' does not exist")
        role_permission, _ = RolePermission.objects.grant_permission(role, self._get_permission(key))
        self.invalidate_role_holders(role.id)
        return role_permission

    def remove_role_permission(self, role_slug: str, key: str) -> int:
        role = Role.objects.by_slug(role_slug)
        if role is None:
            raise RoleNotFound(f"Role '{role_slug}' does not exist")
        deleted, _ = RolePermission.objects.revoke_permission(role, self._get_permission(key))
        self.invalidate_role_holders(role.id)
        return deleted

    def invalidate_role_holders(self, role_id):
        """Drop cached sets for a role and every user holding it."""
        self.cache.invalidate_role(role_id)
        self.cache.invalidate_users(User.objects.filter(role_id=role_id).values_list('id', flat=True))

    # Reporting ------------------------------------------------------------

    def permission_history(self, staff_id, limit: int = 50) -> List[dict]:
        """Grant history for a staff member, newest first."""
        records = (
            StaffPermission.objects.for_user(staff_id)
            .select_related('permission', 'granted_by', 'revoked_by')
            .order_by('-granted_at')[:limit]
        )
        now = timezone.now()
        history = []
        for record in records:
            ended = record.revoked_at or now
            history.append({
                'id': str(record.id),
                'permission': {
                    'id': str(record.permission.id),
                    'key': record.permission.key,
                    'description': record.permission.description,
                },
                'granted_at': record.granted_at,
                'granted_by': _user_summary(record.granted_by),
                'revoked_at': record.revoked_at,
                'revoked_by': _user_summary(record.revoked_by),
                'status': 'active' if record.is_active else 'revoked',
                'duration_seconds': int((ended - record.granted_at).total_seconds()),
            })
        return history

    def staff_with_permissions(self) -> List[dict]:
        staff_members = (
            User.objects.with_role(Role.STAFF)
            .select_related('role')
            .order_by('name', 'email')
        )
        active_grants = (
            StaffPermission.objects.active()
            .filter(user__role__slug=Role.STAFF)
            .select_related('permission', 'granted_by')
        )
        grants_by_user = {}
        for grant in active_grants:
            grants_by_user.setdefault(grant.user_id, []).append({
                'key': grant.permission.key,
                'description': grant.permission.description,
                'granted_at': grant.granted_at,
                'granted_by': _user_summary(grant.granted_by),
            })

        return [
            {
                'id': str(staff.id),
                'name': staff.name,
                'email': staff.email,
                'status': staff.status,
                'permissions': grants_by_user.get(staff.id, []),
            }
            for staff in staff_members
        ]

    def permission_stats(self) -> List[dict]:
        """How many roles and active grants reference each permission."""
        permissions = Permission.objects.annotate(
            role_assignments=Count('role_permissions', distinct=True),
            staff_assignments=Count(
                'staff_permissions',
                filter=Q(staff_permissions__revoked_at__isnull=True),
                distinct=True,
            ),
        ).order_by('key')
        return [
            {
                'key': perm.key,
                'description': perm.description,
                'role_assignments': perm.role_assignments,
                'staff_assignments': perm.staff_assignments,
                'total_assigned': perm.role_assignments + perm.staff_assignments,
            }
            for perm in permissions
        ]

    def staff_activity(self, staff_id, days: int = 30) -> dict:
        """Grants and revocations performed by a staff member recently."""
        since = timezone.now() - timedelta(days=days)
        granted = StaffPermission.objects.filter(granted_by_id=staff_id, granted_at__gte=since).count()
        revoked = StaffPermission.objects.filter(revoked_by_id=staff_id, revoked_at__gte=since).count()
        return {
            'granted_permissions': granted,
            'revoked_permissions': revoked,
            'total_activity': granted + revoked,
            'period_days': days,
        }


def _user_summary(user):
    if user is None:
        return None
    return {'id': str(user.id), 'name': user.name, 'email': user.email}
