"""
Policy Status — Reconcile Worker

Bounded-concurrency executor for root policy reconciles.

  - ThreadPoolExecutor with max_concurrent_reconciles workers
  - A key already waiting in the queue is not queued twice, so a burst
    of events for one root policy becomes one reconcile
  - A key enqueued while it is being reconciled is marked dirty and
    reconciled once more afterwards, so no event is lost
  - A reconcile that raises is requeued with exponential backoff and
    jitter, up to max_retries times

Usage:
    worker = ReconcileWorker(reconciler.reconcile, settings)
    worker.enqueue(ObjectKey("policies", "my-policy"))
    worker.wait_idle(timeout=10)
    worker.shutdown()
"""

from __future__ import annotations

import random
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from infra.config import ReconcilerSettings
from infra.logging import get_logger, log_fields
from propagator.types import ObjectKey

log = get_logger("worker")

ReconcileFn = Callable[[ObjectKey], Any]


def calculate_backoff(attempt: int, settings: ReconcilerSettings) -> float:
    """Calculate requeue delay with jitter."""
    base_delay = settings.backoff_base * (2 ** attempt)
    capped = min(base_delay, settings.backoff_max)
    jitter_range = capped * settings.jitter
    actual = capped + random.uniform(-jitter_range, jitter_range)
    return max(0.0, actual)


class ReconcileWorker:
    def __init__(
        self,
        reconcile: ReconcileFn,
        settings: ReconcilerSettings | None = None,
    ):
        self.reconcile = reconcile
        self.settings = settings or ReconcilerSettings()
        self._pool = ThreadPoolExecutor(
            max_workers=self.settings.max_concurrent_reconciles,
            thread_name_prefix="ps_reconcile",
        )
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._queued: set[ObjectKey] = set()
        self._processing: set[ObjectKey] = set()
        self._dirty: set[ObjectKey] = set()
        self._attempts: dict[ObjectKey, int] = {}
        self._timers: dict[ObjectKey, threading.Timer] = {}
        self._outstanding = 0
        self._closed = False
        self._stats = {"reconciled": 0, "failed": 0, "requeued": 0, "dropped": 0}
        log.info("ReconcileWorker started: max_concurrent_reconciles=%d",
                 self.settings.max_concurrent_reconciles)

    # ─── Queue ───────────────────────────────────────────────────────

    def enqueue(self, key: ObjectKey) -> bool:
        """Queue a reconcile. Returns False if it was merged into pending work."""
        with self._lock:
            admitted = self._admit_locked(key)
            if admitted:
                self._outstanding += 1
                self._submit_locked(key)
        return admitted

    def _admit_locked(self, key: ObjectKey) -> bool:
        if self._closed:
            return False
        if key in self._processing:
            self._dirty.add(key)
            return False
        if key in self._queued:
            return False
        self._queued.add(key)
        return True

    def _submit_locked(self, key: ObjectKey):
        # Caller holds self._lock; shutdown() closes under it before stopping the pool
        self._pool.submit(self._run, key)

    def _run(self, key: ObjectKey):
        with self._lock:
            self._queued.discard(key)
            self._processing.add(key)

        fields = log_fields(key)
        try:
            self.reconcile(key)
        except Exception as e:
            self._on_failure(key, e)
        else:
            with self._lock:
                self._attempts.pop(key, None)
                self._stats["reconciled"] += 1
            log.debug("Reconciled %s", key, extra=fields)
        finally:
            with self._lock:
                self._processing.discard(key)
                again = key in self._dirty and not self._closed
                self._dirty.discard(key)
                if again:
                    # Outstanding count carries over to the rerun
                    self._queued.add(key)
                    self._submit_locked(key)
                else:
                    self._outstanding -= 1
                    self._idle.notify_all()

    def _on_failure(self, key: ObjectKey, error: Exception):
        fields = log_fields(key, error=str(error))
        with self._lock:
            self._stats["failed"] += 1
            attempt = self._attempts.get(key, 0)
            if attempt >= self.settings.max_retries or self._closed:
                self._attempts.pop(key, None)
                self._stats["dropped"] += 1
                log.error("Reconcile failed, giving up on %s", key, extra=fields)
                return
            if key in self._timers:
                # A retry is already scheduled
                return
            self._attempts[key] = attempt + 1
            self._stats["requeued"] += 1
            delay = calculate_backoff(attempt, self.settings)
            timer = threading.Timer(delay, self._requeue, args=(key,))
            timer.daemon = True
            self._timers[key] = timer
            self._outstanding += 1
        log.warning("Reconcile failed, requeueing %s in %.2fs", key, delay, extra=fields)
        timer.start()

    def _requeue(self, key: ObjectKey):
        with self._lock:
            if self._timers.pop(key, None) is None:
                # Cancelled by shutdown, already uncounted
                return
            if self._admit_locked(key):
                self._submit_locked(key)
            else:
                self._outstanding -= 1
                self._idle.notify_all()

    # ─── Lifecycle ───────────────────────────────────────────────────

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is queued, running, or waiting to retry."""
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout=timeout)

    @property
    def stats(self) -> dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def shutdown(self, wait: bool = True):
        log.info("Shutting down ReconcileWorker...")
        with self._lock:
            self._closed = True
            timers = list(self._timers.values())
            self._timers.clear()
            self._outstanding -= len(timers)
        for t in timers:
            t.cancel()
        self._pool.shutdown(wait=wait)
