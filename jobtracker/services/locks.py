"""
Owner-keyed locks: at most one sync in flight per owner.

Manual (HTTP) and scheduled runs both move the same cursor and rollups,
so they share one registry.
"""

import threading
from contextlib import contextmanager

from jobtracker.errors import SyncInProgress
from jobtracker.services.db_service import normalize_owner


class OwnerLocks:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, owner: str) -> threading.Lock:
        key = normalize_owner(owner)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, owner: str, blocking: bool = True):
        """
        Hold the owner's lock for the duration of the block.

        Raises:
            SyncInProgress: blocking=False and another run holds the lock
        """
        lock = self._lock_for(owner)
        if not lock.acquire(blocking=blocking):
            raise SyncInProgress(normalize_owner(owner))
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, owner: str) -> bool:
        return self._lock_for(owner).locked()


# Shared by the API and the scheduler
owner_locks = OwnerLocks()
