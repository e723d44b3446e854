"""
Policy Status — Keyed Lock Registry Tests
"""

import os
import sys
import threading
import time
import unittest

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from propagator.locks import KeyedLockRegistry
from propagator.types import ObjectKey


class TestKeyedLockRegistry(unittest.TestCase):

    def test_same_key_same_lock(self):
        locks = KeyedLockRegistry()
        a = locks.lock_for(ObjectKey("ns", "p1"))
        b = locks.lock_for(ObjectKey("ns", "p1"))
        self.assertIs(a, b)
        self.assertEqual(len(locks), 1)

    def test_distinct_keys_distinct_locks(self):
        locks = KeyedLockRegistry()
        self.assertIsNot(locks.lock_for(ObjectKey("ns", "p1")), locks.lock_for(ObjectKey("ns", "p2")))
        self.assertIsNot(locks.lock_for(ObjectKey("a", "p")), locks.lock_for(ObjectKey("b", "p")))
        self.assertEqual(len(locks), 4)

    def test_concurrent_get_or_create_returns_one_lock(self):
        locks = KeyedLockRegistry()
        key = ObjectKey("ns", "p1")
        seen = []
        barrier = threading.Barrier(8)

        def grab():
            barrier.wait()
            seen.append(locks.lock_for(key))

        threads = [threading.Thread(target=grab) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        self.assertEqual(len({id(lock) for lock in seen}), 1)

    def test_guard_releases_on_exit(self):
        locks = KeyedLockRegistry()
        key = ObjectKey("ns", "p1")
        with locks.acquire(key) as guard:
            self.assertTrue(guard.held)
            self.assertTrue(locks.lock_for(key).locked())
        self.assertFalse(guard.held)
        self.assertFalse(locks.lock_for(key).locked())

    def test_release_is_idempotent(self):
        locks = KeyedLockRegistry()
        guard = locks.acquire(ObjectKey("ns", "p1"))
        locks.release(guard)
        locks.release(guard)
        self.assertFalse(guard.held)

    def test_other_key_not_blocked(self):
        locks = KeyedLockRegistry()
        held = locks.acquire(ObjectKey("ns", "p1"))
        acquired = threading.Event()

        def other():
            with locks.acquire(ObjectKey("ns", "p2")):
                acquired.set()

        t = threading.Thread(target=other)
        t.start()
        self.assertTrue(acquired.wait(timeout=2))
        t.join(timeout=2)
        held.release()

    def test_same_key_waits_for_holder(self):
        locks = KeyedLockRegistry()
        key = ObjectKey("ns", "p1")
        order = []
        held = locks.acquire(key)

        def waiter():
            with locks.acquire(key):
                order.append("waiter")

        t = threading.Thread(target=waiter)
        t.start()
        time.sleep(0.05)
        order.append("holder")
        held.release()
        t.join(timeout=2)
        self.assertEqual(order, ["holder", "waiter"])

    def test_mutual_exclusion_under_contention(self):
        locks = KeyedLockRegistry()
        key = ObjectKey("ns", "p1")
        counter = {"value": 0, "inside": 0, "max_inside": 0}

        def work():
            for _ in range(50):
                with locks.acquire(key):
                    counter["inside"] += 1
                    counter["max_inside"] = max(counter["max_inside"], counter["inside"])
                    counter["value"] += 1
                    counter["inside"] -= 1

        threads = [threading.Thread(target=work) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        self.assertEqual(counter["value"], 300)
        self.assertEqual(counter["max_inside"], 1)

    def test_empty_registry_is_truthy(self):
        locks = KeyedLockRegistry()
        self.assertEqual(len(locks), 0)
        self.assertIs(locks or KeyedLockRegistry(), locks)

    def test_contains(self):
        locks = KeyedLockRegistry()
        key = ObjectKey("ns", "p1")
        self.assertNotIn(key, locks)
        locks.lock_for(key)
        self.assertIn(key, locks)


if __name__ == "__main__":
    unittest.main()
