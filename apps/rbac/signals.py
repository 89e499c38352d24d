"""
RBAC signals for permission cache invalidation.

Role permission changes affect every holder of the role, and a user's
role can change through a plain save, so both are handled here rather
than in each caller. Invalidation runs immediately and again after the
surrounding transaction commits, so a reader cannot re-cache the
pre-commit state.
"""
from django.db import transaction
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from apps.rbac.models import RolePermission, User


def _invalidate_role(role_id):
    from apps.rbac.services import PermissionService

    service = PermissionService()
    service.invalidate_role_holders(role_id)
    transaction.on_commit(lambda: service.invalidate_role_holders(role_id))


@receiver(post_save, sender=RolePermission)
def invalidate_on_role_permission_saved(sender, instance, **kwargs):
    _invalidate_role(instance.role_id)


@receiver(post_delete, sender=RolePermission)
def invalidate_on_role_permission_deleted(sender, instance, **kwargs):
    _invalidate_role(instance.role_id)


@receiver(post_save, sender=User)
def invalidate_on_user_saved(sender, instance, created, **kwargs):
    if created:
        return

    from apps.rbac.cache import get_permission_cache

    cache = get_permission_cache()
    cache.invalidate_user(instance.id)
    transaction.on_commit(lambda: cache.invalidate_user(instance.id))
