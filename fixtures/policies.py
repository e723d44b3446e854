"""
Policy Status — Test Fixtures

Builders for the manifests the reconciler reads, fake lookup
collaborators, and a store wrapper that injects failures and delays.

Usage:
    from fixtures.policies import root_policy, binding, placement_rule

    store = InMemoryObjectStore([
        root_policy("p1"),
        placement_rule("g1", ["clusterA", "clusterB"]),
        binding("b1", policies=["p1"], rule="g1"),
    ])
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Iterable

from propagator.errors import StoreError
from propagator.lookups import DecisionLookup, MembershipLookup
from propagator.store import InMemoryObjectStore
from propagator.types import (
    PLACEMENT_API_GROUP,
    PLACEMENT_LABEL,
    PLACEMENT_RULE_API_GROUP,
    POLICY_API_GROUP,
    RESTRICTED,
    ROOT_POLICY_LABEL,
    BindingOverrides,
    ClusterDecision,
    ObjectKind,
    Placement,
    PlacementBinding,
    PlacementDecisionList,
    PlacementRef,
    PlacementRule,
    Policy,
    PolicySet,
    PolicyStatus,
    Subject,
    Target,
)

NS = "policies"


def targets(*clusters: str) -> list[Target]:
    return [Target(c, c) for c in clusters]


def root_policy(name: str = "policy-a", namespace: str = NS, disabled: bool = False) -> Policy:
    return Policy(namespace=namespace, name=name, disabled=disabled,
                  remediation_action="inform")


def replica(root: Policy, cluster: str, compliance: str = "") -> Policy:
    return Policy(
        namespace=cluster,
        name=f"{root.namespace}.{root.name}",
        labels={ROOT_POLICY_LABEL: f"{root.namespace}.{root.name}"},
        status=PolicyStatus(compliance_state=compliance),
    )


def binding(
    name: str,
    policies: Iterable[str] = (),
    policy_sets: Iterable[str] = (),
    rule: str | None = None,
    placement: str | None = None,
    restricted: bool = False,
    remediation: str = "",
    namespace: str = NS,
) -> PlacementBinding:
    if placement is not None:
        ref = PlacementRef(kind="Placement", name=placement, api_group=PLACEMENT_API_GROUP)
    else:
        ref = PlacementRef(kind="PlacementRule", name=rule or "",
                           api_group=PLACEMENT_RULE_API_GROUP)
    subjects = [Subject(kind="Policy", name=p, api_group=POLICY_API_GROUP) for p in policies]
    subjects += [Subject(kind="PolicySet", name=s, api_group=POLICY_API_GROUP)
                 for s in policy_sets]
    return PlacementBinding(
        namespace=namespace,
        name=name,
        placement_ref=ref,
        subjects=subjects,
        sub_filter=RESTRICTED if restricted else "",
        overrides=BindingOverrides(remediation_action=remediation),
    )


def placement_rule(name: str, clusters: Iterable[str] = (), namespace: str = NS) -> PlacementRule:
    return PlacementRule(namespace=namespace, name=name, decisions=targets(*clusters))


def placement(name: str, namespace: str = NS) -> Placement:
    return Placement(namespace=namespace, name=name)


def placement_decision(
    name: str, placement_name: str, clusters: Iterable[str] = (), namespace: str = NS,
) -> PlacementDecisionList:
    return PlacementDecisionList(
        namespace=namespace,
        name=name,
        labels={PLACEMENT_LABEL: placement_name},
        decisions=[ClusterDecision(cluster_name=c) for c in clusters],
    )


def policy_set(name: str, policies: Iterable[str], namespace: str = NS) -> PolicySet:
    return PolicySet(namespace=namespace, name=name, policies=list(policies))


# ═══════════════════════════════════════════════════════════════════
# Fake Collaborators
# ═══════════════════════════════════════════════════════════════════

class FakeDecisionLookup(DecisionLookup):
    """Binding name → targets, or → exception to raise."""

    def __init__(self, by_binding: dict[str, Any] | None = None):
        self.by_binding = by_binding or {}
        self.calls: list[str] = []

    def get_decisions(self, binding):
        self.calls.append(binding.name)
        result = self.by_binding.get(binding.name, [])
        if isinstance(result, Exception):
            raise result
        return list(result)


class FakeMembershipLookup(MembershipLookup):
    """Policy set name → members, or → exception to raise."""

    def __init__(self, sets: dict[str, Any] | None = None):
        self.sets = sets or {}
        self.calls: list[tuple[str, str, str]] = []

    def is_member(self, policy_name, policy_set_name, namespace):
        self.calls.append((policy_name, policy_set_name, namespace))
        members = self.sets.get(policy_set_name)
        if isinstance(members, Exception):
            raise members
        if members is None:
            raise StoreError(f"PolicySet {namespace}/{policy_set_name} not found")
        return policy_name in members


class FaultyStore(InMemoryObjectStore):
    """
    In-memory store with injectable failures and hooks.

    get_failures:   (kind, namespace, name) → list of exceptions, raised
                    in order on successive gets (None entries pass through)
    list_failures:  kind → exception
    status_failure: exception raised by update_status
    on_get:         callable(kind, namespace, name) run before every get
    """

    def __init__(self, objects: Iterable | None = None):
        super().__init__(objects)
        self.get_failures: dict[tuple[str, str, str], list] = {}
        self.list_failures: dict[str, Exception] = {}
        self.status_failure: Exception | None = None
        self.on_get: Callable[[str, str, str], None] | None = None
        self.status_writes = 0
        self._hook_lock = threading.Lock()

    def fail_get(self, kind: ObjectKind, namespace: str, name: str, *errors):
        self.get_failures[(kind.value, namespace, name)] = list(errors)

    def get(self, kind, namespace, name):
        kind_value = kind.value if isinstance(kind, ObjectKind) else kind
        if self.on_get is not None:
            self.on_get(kind_value, namespace, name)
        with self._hook_lock:
            queue = self.get_failures.get((kind_value, namespace, name))
            error = queue.pop(0) if queue else None
        if error is not None:
            raise error
        return super().get(kind, namespace, name)

    def list(self, kind, namespace, labels=None):
        kind_value = kind.value if isinstance(kind, ObjectKind) else kind
        if kind_value in self.list_failures:
            raise self.list_failures[kind_value]
        return super().list(kind, namespace, labels)

    def update_status(self, obj):
        if self.status_failure is not None:
            raise self.status_failure
        with self._hook_lock:
            self.status_writes += 1
        super().update_status(obj)


def slow_on(kind: ObjectKind, delay: float) -> Callable[[str, str, str], None]:
    """``on_get`` hook that sleeps when reading the given kind."""
    def hook(kind_value, namespace, name):
        if kind_value == kind.value:
            time.sleep(delay)
    return hook
