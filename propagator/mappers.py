"""
Policy Status — Event Mapping

Maps a change to any watched object back to the root policies whose
status may depend on it:

  PlacementBinding   → policies it names, plus members of policy sets it names
  PlacementRule      → bindings pointing at it → their policies
  Placement          → bindings pointing at it → their policies
  PlacementDecision  → its Placement (label) → bindings → policies
  PolicySet          → its members
  Policy (replica)   → its root, only when the replica status changed
  Policy (root)      → itself, only when something other than status changed

EventRouter plugs these into ObjectStore.add_listener and hands the
resulting keys to an enqueue callback (normally ReconcileWorker.enqueue).
"""

from __future__ import annotations

from typing import Callable, Iterable

from infra.logging import get_logger
from propagator.errors import NotFoundError, StoreError
from propagator.store import ObjectStore
from propagator.types import (
    POLICY_API_GROUP,
    ROOT_POLICY_LABEL,
    GroupingKind,
    ObjectKey,
    ObjectKind,
    PlacementBinding,
    PlacementDecisionList,
    Policy,
    PolicySet,
    SubjectKind,
)

log = get_logger("mappers")


def _sorted_keys(keys: Iterable[ObjectKey]) -> list[ObjectKey]:
    return sorted(set(keys))


def parse_root_policy_label(value: str) -> ObjectKey | None:
    """``<namespace>.<name>`` → ObjectKey. Namespaces cannot contain dots."""
    namespace, sep, name = value.partition(".")
    if not sep or not namespace or not name:
        return None
    return ObjectKey(namespace, name)


def is_replica(policy: Policy) -> bool:
    return ROOT_POLICY_LABEL in policy.labels


def root_for_policy(policy: Policy) -> ObjectKey | None:
    """The root policy a (replicated or root) policy belongs to."""
    label = policy.labels.get(ROOT_POLICY_LABEL)
    if label is None:
        return policy.key
    root = parse_root_policy_label(label)
    if root is None:
        log.warning("Invalid root policy label %r on %s", label, policy.key)
    return root


def replica_status_changed(old: Policy | None, new: Policy | None) -> bool:
    """Replica created, deleted, or its status changed."""
    policy = new or old
    if policy is None or not is_replica(policy):
        return False
    if old is None or new is None:
        return True
    return old.status != new.status


def root_spec_changed(old: Policy | None, new: Policy | None) -> bool:
    """Root policy created, deleted, or changed outside its status."""
    policy = new or old
    if policy is None or is_replica(policy):
        return False
    if old is None or new is None:
        return True
    old_doc, new_doc = old.to_dict(), new.to_dict()
    old_doc.pop("status", None)
    new_doc.pop("status", None)
    return old_doc != new_doc


def policies_for_binding(store: ObjectStore, binding: PlacementBinding) -> list[ObjectKey]:
    keys: list[ObjectKey] = []
    for subject in binding.subjects:
        if subject.api_group != POLICY_API_GROUP:
            continue
        kind = SubjectKind.parse(subject.kind)
        if kind is SubjectKind.POLICY:
            keys.append(ObjectKey(binding.namespace, subject.name))
        elif kind is SubjectKind.POLICY_SET:
            try:
                policy_set = store.get(ObjectKind.POLICY_SET, binding.namespace, subject.name)
            except NotFoundError:
                continue
            except StoreError as e:
                log.error("Failed to get the policyset %s/%s: %s",
                          binding.namespace, subject.name, e)
                continue
            keys.extend(policies_for_policy_set(policy_set))
    return _sorted_keys(keys)


def policies_for_policy_set(policy_set: PolicySet) -> list[ObjectKey]:
    return _sorted_keys(ObjectKey(policy_set.namespace, p) for p in policy_set.policies)


def policies_for_grouping(
    store: ObjectStore, kind: GroupingKind, namespace: str, name: str,
) -> list[ObjectKey]:
    keys: list[ObjectKey] = []
    for binding in store.list(ObjectKind.PLACEMENT_BINDING, namespace):
        ref = binding.placement_ref
        if GroupingKind.parse(ref.kind) is kind and ref.name == name:
            keys.extend(policies_for_binding(store, binding))
    return _sorted_keys(keys)


def policies_for_decision(store: ObjectStore, decision: PlacementDecisionList) -> list[ObjectKey]:
    placement = decision.placement_name
    if not placement:
        return []
    return policies_for_grouping(store, GroupingKind.PLACEMENT, decision.namespace, placement)


class EventRouter:
    """Store listener that turns object changes into root policy reconciles."""

    def __init__(self, store: ObjectStore, enqueue: Callable[[ObjectKey], None]):
        self.store = store
        self.enqueue = enqueue

    def attach(self) -> EventRouter:
        self.store.add_listener(self.on_change)
        return self

    def on_change(self, old, new):
        for key in self.keys_for_change(old, new):
            self.enqueue(key)

    def keys_for_change(self, old, new) -> list[ObjectKey]:
        obj = new if new is not None else old
        if obj is None:
            return []

        kind = obj.kind
        keys: list[ObjectKey] = []

        if kind is ObjectKind.POLICY:
            if replica_status_changed(old, new) or root_spec_changed(old, new):
                root = root_for_policy(obj)
                if root is not None:
                    keys.append(root)
        elif kind is ObjectKind.PLACEMENT_BINDING:
            for b in (old, new):
                if b is not None:
                    keys.extend(policies_for_binding(self.store, b))
        elif kind is ObjectKind.POLICY_SET:
            for s in (old, new):
                if s is not None:
                    keys.extend(policies_for_policy_set(s))
        elif kind in (ObjectKind.PLACEMENT_RULE, ObjectKind.PLACEMENT):
            keys.extend(policies_for_grouping(
                self.store, GroupingKind(kind.value), obj.namespace, obj.name))
        elif kind is ObjectKind.PLACEMENT_DECISION:
            for d in (old, new):
                if d is not None:
                    keys.extend(policies_for_decision(self.store, d))

        return _sorted_keys(keys)
