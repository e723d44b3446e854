"""
Policy Status — Keyed Lock Registry

One mutex per root policy identity. Every writer of a root policy's
status (this reconciler, and any other controller that updates the same
status) must share one registry instance so their read-modify-write
sequences never interleave.

Locks are created lazily with an atomic get-or-create and are never
removed. Memory grows with the number of distinct root policies seen,
and no acquirer can ever race a lock being torn down.

Usage:
    locks = KeyedLockRegistry()
    with locks.acquire(ObjectKey("policies", "my-policy")):
        ...  # read, compute, write
"""

from __future__ import annotations

import threading
from typing import Hashable

from infra.logging import get_logger

log = get_logger("locks")


class LockGuard:
    """Held lock for one key. Releases on ``release()`` or context exit."""

    def __init__(self, key: Hashable, lock: threading.Lock):
        self.key = key
        self._lock = lock
        self._held = True

    @property
    def held(self) -> bool:
        return self._held

    def release(self):
        if self._held:
            self._held = False
            self._lock.release()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.release()
        return False


class KeyedLockRegistry:
    """
    Thread-safe map of key → threading.Lock.

    No fairness: a waiter may be overtaken by a later arrival, which is
    what threading.Lock gives.
    """

    def __init__(self):
        self._locks: dict[Hashable, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def lock_for(self, key: Hashable) -> threading.Lock:
        """Get or create the lock for a key."""
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
                log.debug("Created lock for %s", key)
            return lock

    def acquire(self, key: Hashable) -> LockGuard:
        """Block until the key's lock is held and return its guard."""
        lock = self.lock_for(key)
        lock.acquire()
        return LockGuard(key, lock)

    def release(self, guard: LockGuard):
        guard.release()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)

    def __bool__(self) -> bool:
        # Truthy even when empty
        return True

    def __contains__(self, key: Hashable) -> bool:
        with self._registry_lock:
            return key in self._locks
