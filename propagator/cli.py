"""
Policy Status — CLI

Reconcile root policy status against a YAML state file of manifests
(Policy, PolicySet, PlacementBinding, PlacementRule, Placement,
PlacementDecision). Multi-document YAML and top-level lists both work.

Usage:
    # Reconcile one root policy and print its new status
    python -m propagator.cli reconcile --state state.yaml \\
        --namespace policies --name my-policy

    # Show the resolved clusters and placement records without writing
    python -m propagator.cli decisions --state state.yaml \\
        --namespace policies --name my-policy

    # Reconcile every root policy through the worker pool
    python -m propagator.cli sync --state state.yaml [--db status.db]
"""

import argparse
import json
import sys
from pathlib import Path

import yaml

from infra.config import DEFAULT_CONFIG_FILE, ReconcilerSettings, load_config
from infra.logging import configure_logging
from propagator.errors import NotFoundError, PolicyStatusError
from propagator.locks import KeyedLockRegistry
from propagator.mappers import EventRouter, is_replica
from propagator.reconciler import RootPolicyStatusReconciler
from propagator.store import InMemoryObjectStore, ObjectStore, SQLiteObjectStore
from propagator.types import ObjectKey, ObjectKind, object_from_dict


def load_state(path: str) -> list:
    """Parse every manifest in a YAML state file."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"state file not found: {path}")
    objects = []
    with open(p) as f:
        for doc in yaml.safe_load_all(f):
            if doc is None:
                continue
            if isinstance(doc, list):
                items = doc
            elif isinstance(doc, dict):
                items = doc.get("items", [doc])
            else:
                raise ValueError(f"{path}: expected a manifest or a list, got {type(doc).__name__}")
            if not isinstance(items, list):
                raise ValueError(f"{path}: items must be a list")
            objects.extend(object_from_dict(item) for item in items)
    return objects


def open_store(args, objects: list) -> ObjectStore:
    store: ObjectStore
    if getattr(args, "db", None):
        store = SQLiteObjectStore(args.db)
    else:
        store = InMemoryObjectStore()
    if objects:
        if isinstance(store, SQLiteObjectStore):
            with store.transaction():
                store.put_all(objects)
        else:
            store.put_all(objects)
    return store


def _status_json(store: ObjectStore, key: ObjectKey) -> dict:
    policy = store.get(ObjectKind.POLICY, key.namespace, key.name)
    return {"namespace": key.namespace, "name": key.name, "status": policy.status.to_dict()}


def cmd_reconcile(args, settings: ReconcilerSettings):
    store = open_store(args, load_state(args.state))
    reconciler = RootPolicyStatusReconciler.from_store(store, KeyedLockRegistry())
    key = ObjectKey(args.namespace, args.name)

    result = reconciler.reconcile(key)
    if not result.found:
        print(f"Root policy {key} not found; nothing to do.", file=sys.stderr)
        return

    output = _status_json(store, key)
    output["changed"] = result.update.changed
    print(json.dumps(output, indent=2))


def cmd_decisions(args, settings: ReconcilerSettings):
    store = open_store(args, load_state(args.state))
    reconciler = RootPolicyStatusReconciler.from_store(store, KeyedLockRegistry())
    builder = reconciler.writer.builder

    root = store.get(ObjectKind.POLICY, args.namespace, args.name)
    bindings = store.list(ObjectKind.PLACEMENT_BINDING, root.namespace)
    overrides, placements = builder.build_overrides(root, bindings)

    print(json.dumps({
        "decisions": [
            {**t.to_dict(), "remediationAction": overrides[t].remediation_action}
            for t in sorted(overrides)
        ],
        "placement": [p.to_dict() for p in placements],
    }, indent=2))


def cmd_sync(args, settings: ReconcilerSettings):
    from propagator.worker import ReconcileWorker

    objects = load_state(args.state)
    store = open_store(args, objects)
    reconciler = RootPolicyStatusReconciler.from_store(store, KeyedLockRegistry())
    worker = ReconcileWorker(reconciler.reconcile, settings)
    EventRouter(store, worker.enqueue).attach()

    roots = []
    for namespace in sorted({o.namespace for o in objects}):
        for policy in store.list(ObjectKind.POLICY, namespace):
            if not is_replica(policy):
                roots.append(policy.key)
    for key in roots:
        worker.enqueue(key)

    worker.wait_idle(timeout=args.timeout)
    worker.shutdown()

    print(json.dumps({
        "policies": [_status_json(store, key) for key in roots],
        "stats": worker.stats,
    }, indent=2))


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Root policy status propagator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG_FILE,
        help=f"Base config file (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument(
        "--log-level", default=None,
        help="Override the configured log level (DEBUG, INFO, WARNING, ERROR)",
    )
    subs = parser.add_subparsers(dest="command")

    rec_p = subs.add_parser("reconcile", help="Reconcile one root policy's status")
    rec_p.add_argument("--state", "-s", required=True, help="YAML state file")
    rec_p.add_argument("--namespace", "-n", required=True)
    rec_p.add_argument("--name", required=True)
    rec_p.add_argument("--db", help="SQLite store path (default: in-memory)")

    dec_p = subs.add_parser("decisions", help="Show resolved clusters and placements")
    dec_p.add_argument("--state", "-s", required=True, help="YAML state file")
    dec_p.add_argument("--namespace", "-n", required=True)
    dec_p.add_argument("--name", required=True)

    sync_p = subs.add_parser("sync", help="Reconcile every root policy in the state file")
    sync_p.add_argument("--state", "-s", required=True, help="YAML state file")
    sync_p.add_argument("--db", help="SQLite store path (default: in-memory)")
    sync_p.add_argument("--timeout", type=float, default=60.0)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "reconcile": cmd_reconcile,
        "decisions": cmd_decisions,
        "sync": cmd_sync,
    }
    try:
        settings = ReconcilerSettings.from_config(load_config(base_path=args.config))
        configure_logging(level=args.log_level or settings.log_level)
        commands[args.command](args, settings)
    except NotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except (PolicyStatusError, FileNotFoundError, ValueError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
