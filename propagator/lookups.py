"""
Policy Status — Lookup Collaborators

The decision computation depends on three pluggable collaborators:

  - DecisionLookup: which clusters a binding's grouping object selects
  - MembershipLookup: whether a policy is a member of a policy set
  - calculate_root_compliance: fold per-cluster compliance into one value

The Store* implementations read the same object store the reconciler
uses. Tests swap in fakes.
"""

from __future__ import annotations

import abc
from typing import Iterable

from infra.logging import get_logger
from propagator.errors import InvalidBindingError, NotFoundError
from propagator.store import ObjectStore
from propagator.types import (
    ComplianceState,
    GroupingKind,
    ObjectKind,
    PLACEMENT_LABEL,
    PerTargetStatus,
    PlacementBinding,
    Target,
)

log = get_logger("lookups")


# ─── Decisions ───────────────────────────────────────────────────────

class DecisionLookup(abc.ABC):
    @abc.abstractmethod
    def get_decisions(self, binding: PlacementBinding) -> list[Target]:
        """Clusters selected by the binding's grouping object."""
        ...


class StoreDecisionLookup(DecisionLookup):
    """
    PlacementRule: the decisions in its status.
    Placement: every PlacementDecision in the namespace labelled with
    the placement's name, one Target per distinct cluster. Managed
    cluster namespaces are named after the cluster.

    A grouping object that does not exist yet selects nothing.
    """

    def __init__(self, store: ObjectStore):
        self.store = store

    def get_decisions(self, binding: PlacementBinding) -> list[Target]:
        kind = GroupingKind.parse(binding.placement_ref.kind)
        ref_name = binding.placement_ref.name

        if kind is GroupingKind.PLACEMENT_RULE:
            try:
                rule = self.store.get(ObjectKind.PLACEMENT_RULE, binding.namespace, ref_name)
            except NotFoundError:
                return []
            return list(rule.decisions)

        if kind is GroupingKind.PLACEMENT:
            seen: dict[str, Target] = {}
            for pd in self.store.list(ObjectKind.PLACEMENT_DECISION, binding.namespace,
                                      labels={PLACEMENT_LABEL: ref_name}):
                for d in pd.decisions:
                    if d.cluster_name and d.cluster_name not in seen:
                        seen[d.cluster_name] = Target(d.cluster_name, d.cluster_name)
            return list(seen.values())

        raise InvalidBindingError(
            f"placement binding {binding.namespace}/{binding.name} references "
            f"unsupported kind {binding.placement_ref.kind!r}"
        )


# ─── Policy Set Membership ───────────────────────────────────────────

class MembershipLookup(abc.ABC):
    @abc.abstractmethod
    def is_member(self, policy_name: str, policy_set_name: str, namespace: str) -> bool:
        """Raises on lookup failure; callers decide how to treat that."""
        ...


class StoreMembershipLookup(MembershipLookup):
    def __init__(self, store: ObjectStore):
        self.store = store

    def is_member(self, policy_name: str, policy_set_name: str, namespace: str) -> bool:
        policy_set = self.store.get(ObjectKind.POLICY_SET, namespace, policy_set_name)
        return policy_name in policy_set.policies


# ─── Aggregate Compliance ────────────────────────────────────────────

def calculate_root_compliance(statuses: Iterable[PerTargetStatus]) -> str:
    """
    NonCompliant wins over Pending, Pending over unknown, unknown over
    Compliant. No clusters at all means unknown ("").
    """
    seen_any = False
    pending = False
    unknown = False
    for s in statuses:
        seen_any = True
        if s.compliance_state == ComplianceState.NON_COMPLIANT.value:
            return ComplianceState.NON_COMPLIANT.value
        if s.compliance_state == ComplianceState.PENDING.value:
            pending = True
        elif s.compliance_state != ComplianceState.COMPLIANT.value:
            unknown = True

    if not seen_any:
        return ""
    if pending:
        return ComplianceState.PENDING.value
    if unknown:
        return ""
    return ComplianceState.COMPLIANT.value
