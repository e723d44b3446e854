"""
Policy Status — Object Store

Get / list / status-update access to the resources the reconciler
reads and writes. Objects are kept as manifest-shaped JSON documents and
rebuilt into fresh typed objects on every read, so callers never share
mutable state with the store or with each other.

Implementations:
  - InMemoryObjectStore: dev/test, same process
  - SQLiteObjectStore:   single-file persistence, survives restarts

NotFoundError is distinguishable from every other StoreError.
Listeners registered with ``add_listener`` are called with
``(old, new)`` after each committed write (``new`` is None on delete);
the event router uses this to enqueue reconciles.
"""

from __future__ import annotations

import abc
import copy
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Iterable

from infra.logging import get_logger
from propagator.errors import NotFoundError, StoreError
from propagator.types import ObjectKind, object_from_dict

log = get_logger("store")

StoreListener = Callable[[Any, Any], None]


def _kind_value(kind: ObjectKind | str) -> str:
    return kind.value if isinstance(kind, ObjectKind) else str(kind)


def _labels_match(doc: dict[str, Any], labels: dict[str, str] | None) -> bool:
    if not labels:
        return True
    have = (doc.get("metadata", {}) or {}).get("labels", {}) or {}
    return all(have.get(k) == v for k, v in labels.items())


class ObjectStore(abc.ABC):
    """Abstract read/list/update interface over typed objects."""

    def __init__(self):
        self._listeners: list[StoreListener] = []

    @abc.abstractmethod
    def _get_doc(self, kind: str, namespace: str, name: str) -> dict[str, Any] | None:
        ...

    @abc.abstractmethod
    def _list_docs(self, kind: str, namespace: str) -> list[dict[str, Any]]:
        ...

    @abc.abstractmethod
    def _write_doc(self, kind: str, namespace: str, name: str,
                   doc: dict[str, Any] | None, status_only: bool) -> dict[str, Any] | None:
        """Create/replace (doc), patch status (status_only), or delete (doc None).

        Returns the previous document, or None if there was none.
        """
        ...

    @abc.abstractmethod
    def resource_version(self, kind: ObjectKind | str, namespace: str, name: str) -> int:
        """Monotonic write counter of one object. 0 when absent."""
        ...

    # ─── Reads ───────────────────────────────────────────────────────

    def get(self, kind: ObjectKind | str, namespace: str, name: str):
        doc = self._get_doc(_kind_value(kind), namespace, name)
        if doc is None:
            raise NotFoundError(_kind_value(kind), namespace, name)
        return object_from_dict(doc)

    def list(self, kind: ObjectKind | str, namespace: str,
             labels: dict[str, str] | None = None) -> list:
        """All objects of a kind in a namespace, sorted by name."""
        docs = [d for d in self._list_docs(_kind_value(kind), namespace)
                if _labels_match(d, labels)]
        docs.sort(key=lambda d: d["metadata"]["name"])
        return [object_from_dict(d) for d in docs]

    # ─── Writes ──────────────────────────────────────────────────────

    def put(self, obj) -> None:
        """Create or replace an object, status included."""
        doc = obj.to_dict()
        old = self._write_doc(obj.kind.value, obj.namespace, obj.name, doc, status_only=False)
        self._notify(old, doc)

    def put_all(self, objs: Iterable) -> None:
        for obj in objs:
            self.put(obj)

    def update_status(self, obj) -> None:
        """Replace only the status of an existing object."""
        doc = obj.to_dict()
        old = self._write_doc(obj.kind.value, obj.namespace, obj.name, doc, status_only=True)
        if old is None:
            raise NotFoundError(obj.kind.value, obj.namespace, obj.name)
        new = copy.deepcopy(old)
        new["status"] = doc.get("status", {})
        self._notify(old, new)

    def delete(self, kind: ObjectKind | str, namespace: str, name: str) -> None:
        old = self._write_doc(_kind_value(kind), namespace, name, None, status_only=False)
        if old is None:
            raise NotFoundError(_kind_value(kind), namespace, name)
        self._notify(old, None)

    # ─── Listeners ───────────────────────────────────────────────────

    def add_listener(self, listener: StoreListener) -> None:
        self._listeners.append(listener)

    def _notify(self, old_doc: dict[str, Any] | None, new_doc: dict[str, Any] | None):
        if not self._listeners:
            return
        old = object_from_dict(old_doc) if old_doc else None
        new = object_from_dict(new_doc) if new_doc else None
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception:
                log.exception("Store listener failed")


# ═══════════════════════════════════════════════════════════════════
# In-Memory Store
# ═══════════════════════════════════════════════════════════════════

class InMemoryObjectStore(ObjectStore):
    """Thread-safe dict-backed store. Documents are deep-copied in and out."""

    def __init__(self, objects: Iterable | None = None):
        super().__init__()
        self._docs: dict[tuple[str, str, str], dict[str, Any]] = {}
        self._versions: dict[tuple[str, str, str], int] = {}
        self._lock = threading.Lock()
        if objects:
            self.put_all(objects)

    def _get_doc(self, kind, namespace, name):
        with self._lock:
            doc = self._docs.get((kind, namespace, name))
            return copy.deepcopy(doc) if doc is not None else None

    def _list_docs(self, kind, namespace):
        with self._lock:
            return [copy.deepcopy(d) for (k, ns, _), d in self._docs.items()
                    if k == kind and ns == namespace]

    def _write_doc(self, kind, namespace, name, doc, status_only):
        key = (kind, namespace, name)
        with self._lock:
            old = self._docs.get(key)
            if doc is None:
                if old is not None:
                    del self._docs[key]
                    self._versions.pop(key, None)
                return old
            if status_only:
                if old is None:
                    return None
                new = copy.deepcopy(old)
                new["status"] = copy.deepcopy(doc.get("status", {}))
            else:
                new = copy.deepcopy(doc)
            self._docs[key] = new
            self._versions[key] = self._versions.get(key, 0) + 1
            return copy.deepcopy(old) if old is not None else None

    def resource_version(self, kind, namespace, name):
        with self._lock:
            return self._versions.get((_kind_value(kind), namespace, name), 0)


# ═══════════════════════════════════════════════════════════════════
# SQLite Store
# ═══════════════════════════════════════════════════════════════════

class _Transaction:
    """
    SQLite transaction context manager.

    While active, individual writes skip their own commit. The real
    COMMIT happens when the context manager exits cleanly.
    """
    def __init__(self, store: SQLiteObjectStore):
        self.store = store

    def __enter__(self):
        self.store._lock.acquire()
        self.store.conn.execute("BEGIN IMMEDIATE")
        self.store._in_transaction = True
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.store._in_transaction = False
        try:
            if exc_type is None:
                self.store.conn.commit()
            else:
                self.store.conn.rollback()
        finally:
            self.store._lock.release()
        return False


class SQLiteObjectStore(ObjectStore):
    """SQLite-backed store. One row per object, the manifest stored as JSON."""

    def __init__(self, db_path: str | Path = "policy_status.db"):
        super().__init__()
        self.db_path = str(db_path)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        # RLock so writes inside transaction() can re-enter
        self._lock = threading.RLock()
        self._in_transaction = False
        self._create_tables()

    def _commit(self):
        if not self._in_transaction:
            self.conn.commit()

    def transaction(self):
        """
        Context manager for explicit transaction boundaries.

        Usage:
            with store.transaction():
                store.put(binding)
                store.put(rule)
                # Both committed atomically, or both rolled back
        """
        return _Transaction(self)

    def _create_tables(self):
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS objects (
                    kind TEXT NOT NULL,
                    namespace TEXT NOT NULL,
                    name TEXT NOT NULL,
                    doc TEXT NOT NULL,
                    resource_version INTEGER NOT NULL DEFAULT 1,
                    PRIMARY KEY (kind, namespace, name)
                );

                CREATE INDEX IF NOT EXISTS idx_objects_ns ON objects(kind, namespace);
            """)
            self._commit()

    def _get_doc(self, kind, namespace, name):
        try:
            with self._lock:
                row = self.conn.execute(
                    "SELECT doc FROM objects WHERE kind = ? AND namespace = ? AND name = ?",
                    (kind, namespace, name),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"failed to read {kind} {namespace}/{name}: {e}") from e
        return json.loads(row["doc"]) if row else None

    def _list_docs(self, kind, namespace):
        try:
            with self._lock:
                rows = self.conn.execute(
                    "SELECT doc FROM objects WHERE kind = ? AND namespace = ?",
                    (kind, namespace),
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"failed to list {kind} in {namespace}: {e}") from e
        return [json.loads(r["doc"]) for r in rows]

    def _write_doc(self, kind, namespace, name, doc, status_only):
        try:
            with self._lock:
                old = self._get_doc(kind, namespace, name)
                if doc is None:
                    if old is not None:
                        self.conn.execute(
                            "DELETE FROM objects WHERE kind = ? AND namespace = ? AND name = ?",
                            (kind, namespace, name),
                        )
                        self._commit()
                    return old
                if status_only:
                    if old is None:
                        return None
                    new = copy.deepcopy(old)
                    new["status"] = doc.get("status", {})
                else:
                    new = doc
                self.conn.execute("""
                    INSERT INTO objects (kind, namespace, name, doc, resource_version)
                    VALUES (?, ?, ?, ?, 1)
                    ON CONFLICT(kind, namespace, name) DO UPDATE SET
                        doc = excluded.doc,
                        resource_version = objects.resource_version + 1
                """, (kind, namespace, name, json.dumps(new, sort_keys=True)))
                self._commit()
                return old
        except sqlite3.Error as e:
            raise StoreError(f"failed to write {kind} {namespace}/{name}: {e}") from e

    def resource_version(self, kind, namespace, name):
        with self._lock:
            row = self.conn.execute(
                "SELECT resource_version FROM objects WHERE kind = ? AND namespace = ? AND name = ?",
                (_kind_value(kind), namespace, name),
            ).fetchone()
        return int(row["resource_version"]) if row else 0

    def close(self):
        with self._lock:
            self.conn.close()
