"""
Permission cache.

Memoizes resolved permission sets per user and per role for a bounded
time. Correctness never depends on the cache: every mutation of roles,
grants or role permissions invalidates the affected entries before it
returns, and anything missed expires after the TTL.

One instance is built per process by ``get_permission_cache()`` and
injected into ``PermissionService``. The backend is chosen by the
``PERMISSION_CACHE`` setting::

    PERMISSION_CACHE = {
        'BACKEND': 'apps.rbac.cache.PermissionCache',   # or SharedPermissionCache
        'TTL': 300,
        'OPTIONS': {},
    }
"""
import logging
import threading
import time
from functools import lru_cache
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Tuple

from django.conf import settings
from django.core.cache import caches
from django.utils import timezone
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300  # 5 minutes

Resolver = Callable[[], Iterable[str]]


class PermissionCache:
    """
    In-process permission cache guarded by a lock.

    Resolvers run outside the lock, so two threads missing the same key
    may both resolve it. A resolution that overlaps an invalidation is
    returned to its caller but not stored.
    """

    def __init__(self, ttl: int = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._users: Dict[str, Tuple[frozenset, float]] = {}
        self._roles: Dict[str, Tuple[frozenset, float]] = {}
        self._all: Optional[Tuple[Any, float]] = None
        self._generation = 0
        self._hits = 0
        self._misses = 0
        self._last_updated = None

    def _fresh(self, entry):
        return entry is not None and self._clock() - entry[1] < self.ttl

    def _get_or_resolve(self, store: Optional[dict], key: Optional[Hashable], resolver: Callable[[], Any], convert):
        with self._lock:
            entry = self._all if store is None else store.get(key)
            if self._fresh(entry):
                self._hits += 1
                return entry[0]
            self._misses += 1
            generation = self._generation

        value = convert(resolver())

        with self._lock:
            if generation == self._generation:
                entry = (value, self._clock())
                if store is None:
                    self._all = entry
                else:
                    store[key] = entry
                self._last_updated = timezone.now()
            else:
                logger.debug("Permission cache invalidated during resolution, result not stored")
        return value

    def get_user_permissions(self, user_id, resolver: Resolver) -> frozenset:
        return self._get_or_resolve(self._users, str(user_id), resolver, frozenset)

    def get_role_permissions(self, role_id, resolver: Resolver) -> frozenset:
        return self._get_or_resolve(self._roles, str(role_id), resolver, frozenset)

    def get_all_permissions(self, resolver: Callable[[], Iterable[Any]]) -> tuple:
        """Cache the full permission catalogue."""
        return self._get_or_resolve(None, None, resolver, tuple)

    def invalidate_user(self, user_id):
        with self._lock:
            self._generation += 1
            removed = self._users.pop(str(user_id), None)
        logger.debug(f"Permission cache cleared for user {user_id}", extra={'had_entry': removed is not None})

    def invalidate_role(self, role_id):
        with self._lock:
            self._generation += 1
            removed = self._roles.pop(str(role_id), None)
        logger.debug(f"Permission cache cleared for role {role_id}", extra={'had_entry': removed is not None})

    def invalidate_users(self, user_ids: Iterable):
        with self._lock:
            self._generation += 1
            for user_id in user_ids:
                self._users.pop(str(user_id), None)

    def invalidate_all(self):
        with self._lock:
            self._generation += 1
            self._users.clear()
            self._roles.clear()
            self._all = None
            self._last_updated = timezone.now()
        logger.info("Permission cache cleared")

    def get_stats(self) -> dict:
        with self._lock:
            return {
                'backend': 'local',
                'cached_users': len(self._users),
                'cached_roles': len(self._roles),
                'total_permissions': len(self._all[0]) if self._all else 0,
                'ttl_seconds': self.ttl,
                'hits': self._hits,
                'misses': self._misses,
                'last_updated': self._last_updated.isoformat() if self._last_updated else None,
            }


class SharedPermissionCache:
    """
    Permission cache backed by a Django cache alias (Redis in production).

    Use when several processes serve requests. ``invalidate_all`` bumps a
    generation number that is part of every key, so old entries become
    unreachable and expire on their own.
    """

    KEY_PREFIX = 'rbac:permissions'

    def __init__(self, ttl: int = DEFAULT_TTL, alias: str = 'default'):
        self.ttl = ttl
        self.alias = alias

    @property
    def _cache(self):
        return caches[self.alias]

    def _generation(self):
        key = f"{self.KEY_PREFIX}:generation"
        generation = self._cache.get(key)
        if generation is None:
            self._cache.add(key, 1, timeout=None)
            generation = self._cache.get(key, 1)
        return generation

    def _key(self, kind, identifier=None):
        suffix = f":{identifier}" if identifier is not None else ''
        return f"{self.KEY_PREFIX}:v{self._generation()}:{kind}{suffix}"

    def _get_or_resolve(self, key, resolver, convert):
        cached = self._cache.get(key)
        if cached is not None:
            return convert(cached)
        value = convert(resolver())
        self._cache.set(key, list(value), timeout=self.ttl)
        self._cache.set(f"{self.KEY_PREFIX}:last_updated", timezone.now().isoformat(), timeout=None)
        return value

    def get_user_permissions(self, user_id, resolver: Resolver) -> frozenset:
        return self._get_or_resolve(self._key('user', user_id), resolver, frozenset)

    def get_role_permissions(self, role_id, resolver: Resolver) -> frozenset:
        return self._get_or_resolve(self._key('role', role_id), resolver, frozenset)

    def get_all_permissions(self, resolver) -> tuple:
        return self._get_or_resolve(self._key('all'), resolver, tuple)

    def invalidate_user(self, user_id):
        self._cache.delete(self._key('user', user_id))

    def invalidate_role(self, role_id):
        self._cache.delete(self._key('role', role_id))

    def invalidate_users(self, user_ids: Iterable):
        self._cache.delete_many([self._key('user', user_id) for user_id in user_ids])

    def invalidate_all(self):
        key = f"{self.KEY_PREFIX}:generation"
        self._generation()
        self._cache.incr(key)
        self._cache.set(f"{self.KEY_PREFIX}:last_updated", timezone.now().isoformat(), timeout=None)
        logger.info("Shared permission cache cleared")

    def get_stats(self) -> dict:
        return {
            'backend': 'shared',
            'cache_alias': self.alias,
            'generation': self._generation(),
            'ttl_seconds': self.ttl,
            'last_updated': self._cache.get(f"{self.KEY_PREFIX}:last_updated"),
        }


@lru_cache(maxsize=None)
def get_permission_cache():
    """
    Return the process-wide permission cache configured in settings.
    """
    config = getattr(settings, 'PERMISSION_CACHE', {})
    backend = import_string(config.get('BACKEND', 'apps.rbac.cache.PermissionCache'))
    cache = backend(ttl=config.get('TTL', DEFAULT_TTL), **config.get('OPTIONS', {}))
    logger.info(f"Permission cache initialised: {backend.__name__}", extra={'ttl_seconds': cache.ttl})
    return cache
