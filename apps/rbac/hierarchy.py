"""
User hierarchy traversal.

Every user may point at a parent (the user who created them). A user
manages everyone below them on that parent chain. Creation rules only
let a user create strictly lower-ranked roles, so chains are acyclic
and short, but the walk is still bounded and fails closed.
"""
import logging
from typing import Callable, Dict, List, Optional

from django.conf import settings

from apps.core.exceptions import HierarchyDepthExceeded, UserNotFound
from apps.core.logging import SecurityLogger
from apps.rbac.models import User

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 32


class HierarchyWalker:
    """Answers "does A manage B" questions over the parent-pointer graph."""

    def __init__(self, max_depth: Optional[int] = None):
        self.max_depth = max_depth or getattr(settings, 'RBAC_HIERARCHY_MAX_DEPTH', DEFAULT_MAX_DEPTH)

    @staticmethod
    def _parent_from_db(user_id):
        return User.objects.filter(pk=user_id).values_list('parent_id', flat=True).first()

    def _walk(self, user_id, parent_of: Callable):
        """
        Yield the ancestors of ``user_id``, nearest first.

        Raises:
            HierarchyDepthExceeded: chain longer than ``max_depth`` or cyclic
        """
        seen = {str(user_id)}
        current = parent_of(user_id)
        depth = 0
        while current is not None:
            depth += 1
            if depth > self.max_depth:
                raise HierarchyDepthExceeded(
                    f"Hierarchy deeper than {self.max_depth} levels",
                    details={'user_id': str(user_id)},
                )
            if str(current) in seen:
                raise HierarchyDepthExceeded(
                    'Hierarchy contains a cycle',
                    details={'user_id': str(user_id), 'repeated_id': str(current)},
                )
            seen.add(str(current))
            yield current
            current = parent_of(current)

    def ancestors(self, user_id) -> List:
        """Parent chain of a user, nearest first."""
        return list(self._walk(user_id, self._parent_from_db))

    def _is_managed(self, ancestor_id, descendant_id, parent_of: Callable) -> bool:
        target = str(ancestor_id)
        try:
            for current in self._walk(descendant_id, parent_of):
                if str(current) == target:
                    return True
        except HierarchyDepthExceeded as exc:
            SecurityLogger.log_hierarchy_anomaly(descendant_id, exc.message, ancestor_id=target)
            return False
        return False

    def is_managed(self, ancestor_id, descendant_id) -> bool:
        """
        True if ``ancestor_id`` is on ``descendant_id``'s parent chain.

        A direct parent counts; a user does not manage themselves.
        Cyclic or over-deep chains answer False.
        """
        if ancestor_id is None or descendant_id is None:
            return False
        return self._is_managed(ancestor_id, descendant_id, self._parent_from_db)

    def get_managed_users(self, ancestor_id, role_slug: Optional[str] = None) -> List[User]:
        """
        Every user (optionally only those with ``role_slug``) that
        ``ancestor_id`` manages, directly or transitively.

        Raises:
            UserNotFound: the ancestor does not exist
        """
        if not User.objects.filter(pk=ancestor_id).exists():
            raise UserNotFound('User not found', details={'user_id': str(ancestor_id)})

        parents: Dict[str, Optional[str]] = {
            str(user_id): (str(parent_id) if parent_id else None)
            for user_id, parent_id in User.objects.values_list('id', 'parent_id')
        }

        candidates = User.objects.select_related('role').exclude(pk=ancestor_id)
        if role_slug:
            candidates = candidates.filter(role__slug=role_slug)

        managed = [
            user for user in candidates
            if self._is_managed(ancestor_id, user.id, lambda uid: parents.get(str(uid)))
        ]
        logger.debug(
            f"Resolved {len(managed)} managed users",
            extra={'ancestor_id': str(ancestor_id), 'role_filter': role_slug},
        )
        return managed
