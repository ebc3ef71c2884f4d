"""
Revoked-token registry
======================

When a user account is deleted its outstanding tokens must stop working.
The registry keeps the revoked user ids in a bounded TTL cache: an entry
only needs to live as long as the longest token issued before revocation,
so entries expire after ``settings.token_lifetime_s``.

The registry is filled from two places:

- ``DBBROKER_REVOKED_USER_IDS`` (a JSON list) seeds the process-wide
  registry when it is first built, which covers accounts deleted while
  this process was down;
- the auth service, when it runs in the same process, calls
  ``dbbroker.dependencies.get_revocation_registry().revoke(user_id)`` as it
  deletes an account.
"""

import logging
import threading
from typing import Hashable, Iterable, Optional

from cachetools import TTLCache

from dbbroker.config import settings

logger = logging.getLogger(__name__)


class ExpiringKeyValueStore:
    """Thread-safe TTLCache wrapper with explicit ``ttl`` and ``maxsize``."""

    def __init__(self, maxsize: int, ttl: float):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.Lock()

    def set(self, key: Hashable, value=True) -> None:
        with self._lock:
            self._cache[key] = value

    def contains(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._cache

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


class RevokedTokenRegistry:
    """Set of user ids whose tokens are no longer accepted."""

    def __init__(
        self,
        store: Optional[ExpiringKeyValueStore] = None,
        revoked: Iterable = (),
    ):
        self._store = store or ExpiringKeyValueStore(
            maxsize=settings.revocation_max_entries,
            ttl=settings.token_lifetime_s,
        )
        for user_id in revoked:
            self.revoke(user_id)

    def revoke(self, user_id) -> None:
        self._store.set(str(user_id))
        logger.info("Token revoked", extra={"user_id": str(user_id)})

    def is_revoked(self, user_id) -> bool:
        return self._store.contains(str(user_id))

    def restore(self, user_id) -> None:
        self._store.delete(str(user_id))

    def clear(self) -> None:
        self._store.clear()
