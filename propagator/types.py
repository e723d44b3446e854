"""
Policy Status — Type Definitions

Data structures for root policies, replicated policies, placement
bindings, grouping objects (PlacementRule / Placement), placement
decisions, and the status fields written back onto the root policy.

Every stored object round-trips through ``to_dict()`` / ``from_dict()``
using the field names of the Kubernetes resources it models, so that
store documents and CLI state files read like the real manifests.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, ClassVar


POLICY_API_GROUP = "policy.open-cluster-management.io"
PLACEMENT_RULE_API_GROUP = "apps.open-cluster-management.io"
PLACEMENT_API_GROUP = "cluster.open-cluster-management.io"

ROOT_POLICY_LABEL = "policy.open-cluster-management.io/root-policy"
PLACEMENT_LABEL = "cluster.open-cluster-management.io/placement"

RESTRICTED = "restricted"
ENFORCE = "enforce"


# ─── Kinds ──────────────────────────────────────────────────────────

class ObjectKind(str, enum.Enum):
    """Every resource kind the store holds."""
    POLICY = "Policy"
    POLICY_SET = "PolicySet"
    PLACEMENT_BINDING = "PlacementBinding"
    PLACEMENT_RULE = "PlacementRule"
    PLACEMENT = "Placement"
    PLACEMENT_DECISION = "PlacementDecision"


class SubjectKind(str, enum.Enum):
    """Binding subjects that can select a policy."""
    POLICY = "Policy"
    POLICY_SET = "PolicySet"

    @classmethod
    def parse(cls, kind: str) -> SubjectKind | None:
        try:
            return cls(kind)
        except ValueError:
            return None


class GroupingKind(str, enum.Enum):
    """Grouping objects a binding's placementRef may point at."""
    PLACEMENT_RULE = "PlacementRule"
    PLACEMENT = "Placement"

    @property
    def api_group(self) -> str:
        if self is GroupingKind.PLACEMENT_RULE:
            return PLACEMENT_RULE_API_GROUP
        return PLACEMENT_API_GROUP

    @property
    def object_kind(self) -> ObjectKind:
        return ObjectKind(self.value)

    @classmethod
    def parse(cls, kind: str) -> GroupingKind | None:
        try:
            return cls(kind)
        except ValueError:
            return None


class ComplianceState(str, enum.Enum):
    """Compliance values reported by replicated policies."""
    COMPLIANT = "Compliant"
    NON_COMPLIANT = "NonCompliant"
    PENDING = "Pending"


# ─── Identity ───────────────────────────────────────────────────────

@dataclass(frozen=True, order=True)
class ObjectKey:
    """Namespace + name. Identifies a root policy and keys its lock."""
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


def replica_name(root: ObjectKey) -> str:
    """Name of a replicated policy in a cluster namespace."""
    return f"{root.namespace}.{root.name}"


def _meta(namespace: str, name: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
    meta: dict[str, Any] = {"namespace": namespace, "name": name}
    if labels:
        meta["labels"] = dict(labels)
    return meta


def _read_meta(doc: dict[str, Any]) -> tuple[str, str, dict[str, str]]:
    meta = doc.get("metadata", {}) or {}
    return meta.get("namespace", ""), meta.get("name", ""), dict(meta.get("labels", {}) or {})


# ─── Placement Decisions ────────────────────────────────────────────

@dataclass(frozen=True, order=True)
class Target:
    """One candidate destination cluster for a replicated policy."""
    cluster_name: str
    cluster_namespace: str

    def to_dict(self) -> dict[str, str]:
        return {"clusterName": self.cluster_name, "clusterNamespace": self.cluster_namespace}

    @staticmethod
    def from_dict(d: dict[str, Any]) -> Target:
        return Target(
            cluster_name=d.get("clusterName", ""),
            cluster_namespace=d.get("clusterNamespace", ""),
        )


@dataclass
class BindingOverrides:
    """Per-binding overrides applied to the clusters it selects."""
    remediation_action: str = ""


@dataclass
class PlacementRecord:
    """Provenance entry on the root status: which binding placed the policy."""
    placement_binding: str
    policy_set: str = ""
    placement_rule: str = ""
    placement: str = ""

    def to_dict(self) -> dict[str, str]:
        d = {"placementBinding": self.placement_binding}
        if self.policy_set:
            d["policySet"] = self.policy_set
        if self.placement_rule:
            d["placementRule"] = self.placement_rule
        if self.placement:
            d["placement"] = self.placement
        return d

    @staticmethod
    def from_dict(d: dict[str, Any]) -> PlacementRecord:
        return PlacementRecord(
            placement_binding=d.get("placementBinding", ""),
            policy_set=d.get("policySet", ""),
            placement_rule=d.get("placementRule", ""),
            placement=d.get("placement", ""),
        )


@dataclass
class PerTargetStatus:
    """Compliance of the replica on one cluster. Empty state means pending."""
    cluster_name: str
    cluster_namespace: str
    compliance_state: str = ""

    def to_dict(self) -> dict[str, str]:
        d = {"clustername": self.cluster_name, "clusternamespace": self.cluster_namespace}
        if self.compliance_state:
            d["compliant"] = self.compliance_state
        return d

    @staticmethod
    def from_dict(d: dict[str, Any]) -> PerTargetStatus:
        return PerTargetStatus(
            cluster_name=d.get("clustername", ""),
            cluster_namespace=d.get("clusternamespace", ""),
            compliance_state=d.get("compliant", ""),
        )


# ─── Policies ───────────────────────────────────────────────────────

@dataclass
class PolicyStatus:
    """Mutable status of a policy. Only the root status writer sets it on roots."""
    placement: list[PlacementRecord] = field(default_factory=list)
    status: list[PerTargetStatus] = field(default_factory=list)
    compliance_state: str = ""

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        if self.placement:
            d["placement"] = [p.to_dict() for p in self.placement]
        if self.status:
            d["status"] = [s.to_dict() for s in self.status]
        if self.compliance_state:
            d["compliant"] = self.compliance_state
        return d

    @staticmethod
    def from_dict(d: dict[str, Any] | None) -> PolicyStatus:
        d = d or {}
        return PolicyStatus(
            placement=[PlacementRecord.from_dict(p) for p in d.get("placement", []) or []],
            status=[PerTargetStatus.from_dict(s) for s in d.get("status", []) or []],
            compliance_state=d.get("compliant", ""),
        )


@dataclass
class Policy:
    """A root policy, or a replica of one in a cluster namespace."""
    kind: ClassVar[ObjectKind] = ObjectKind.POLICY

    namespace: str
    name: str
    disabled: bool = False
    remediation_action: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    status: PolicyStatus = field(default_factory=PolicyStatus)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    def to_dict(self) -> dict[str, Any]:
        spec: dict[str, Any] = {"disabled": self.disabled}
        if self.remediation_action:
            spec["remediationAction"] = self.remediation_action
        return {
            "kind": self.kind.value,
            "metadata": _meta(self.namespace, self.name, self.labels),
            "spec": spec,
            "status": self.status.to_dict(),
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> Policy:
        namespace, name, labels = _read_meta(d)
        spec = d.get("spec", {}) or {}
        return Policy(
            namespace=namespace,
            name=name,
            disabled=bool(spec.get("disabled", False)),
            remediation_action=spec.get("remediationAction", ""),
            labels=labels,
            status=PolicyStatus.from_dict(d.get("status")),
        )


@dataclass
class PolicySet:
    """A named group of policies in one namespace. Used for membership only."""
    kind: ClassVar[ObjectKind] = ObjectKind.POLICY_SET

    namespace: str
    name: str
    policies: list[str] = field(default_factory=list)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "metadata": _meta(self.namespace, self.name),
            "spec": {"policies": list(self.policies)},
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> PolicySet:
        namespace, name, _ = _read_meta(d)
        spec = d.get("spec", {}) or {}
        return PolicySet(namespace=namespace, name=name,
                         policies=[str(p) for p in spec.get("policies", []) or []])


# ─── Bindings ───────────────────────────────────────────────────────

@dataclass
class Subject:
    """A policy or policy set selected by a binding."""
    kind: str
    name: str
    api_group: str = POLICY_API_GROUP

    def to_dict(self) -> dict[str, str]:
        return {"apiGroup": self.api_group, "kind": self.kind, "name": self.name}

    @staticmethod
    def from_dict(d: dict[str, Any]) -> Subject:
        return Subject(kind=d.get("kind", ""), name=d.get("name", ""),
                       api_group=d.get("apiGroup", ""))


@dataclass
class PlacementRef:
    """Reference from a binding to the grouping object that picks clusters."""
    kind: str
    name: str
    api_group: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"apiGroup": self.api_group, "kind": self.kind, "name": self.name}

    @staticmethod
    def from_dict(d: dict[str, Any]) -> PlacementRef:
        return PlacementRef(kind=d.get("kind", ""), name=d.get("name", ""),
                            api_group=d.get("apiGroup", ""))


@dataclass
class PlacementBinding:
    """Binds subjects (policies, policy sets) to a grouping object."""
    kind: ClassVar[ObjectKind] = ObjectKind.PLACEMENT_BINDING

    namespace: str
    name: str
    placement_ref: PlacementRef
    subjects: list[Subject] = field(default_factory=list)
    sub_filter: str = ""
    overrides: BindingOverrides = field(default_factory=BindingOverrides)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    @property
    def restricted(self) -> bool:
        return self.sub_filter == RESTRICTED

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "metadata": _meta(self.namespace, self.name),
            "placementRef": self.placement_ref.to_dict(),
            "subjects": [s.to_dict() for s in self.subjects],
        }
        if self.sub_filter:
            d["subFilter"] = self.sub_filter
        if self.overrides.remediation_action:
            d["bindingOverrides"] = {"remediationAction": self.overrides.remediation_action}
        return d

    @staticmethod
    def from_dict(d: dict[str, Any]) -> PlacementBinding:
        namespace, name, _ = _read_meta(d)
        overrides = d.get("bindingOverrides", {}) or {}
        return PlacementBinding(
            namespace=namespace,
            name=name,
            placement_ref=PlacementRef.from_dict(d.get("placementRef", {}) or {}),
            subjects=[Subject.from_dict(s) for s in d.get("subjects", []) or []],
            sub_filter=d.get("subFilter", ""),
            overrides=BindingOverrides(
                remediation_action=overrides.get("remediationAction", "")),
        )


# ─── Grouping Objects ───────────────────────────────────────────────

@dataclass
class PlacementRule:
    """Legacy grouping object; its status carries the decided clusters."""
    kind: ClassVar[ObjectKind] = ObjectKind.PLACEMENT_RULE

    namespace: str
    name: str
    decisions: list[Target] = field(default_factory=list)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "metadata": _meta(self.namespace, self.name),
            "status": {"decisions": [t.to_dict() for t in self.decisions]},
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> PlacementRule:
        namespace, name, _ = _read_meta(d)
        status = d.get("status", {}) or {}
        return PlacementRule(namespace=namespace, name=name,
                             decisions=[Target.from_dict(t) for t in status.get("decisions", []) or []])


@dataclass
class Placement:
    """Grouping object whose decisions live in separate PlacementDecision objects."""
    kind: ClassVar[ObjectKind] = ObjectKind.PLACEMENT

    namespace: str
    name: str

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "metadata": _meta(self.namespace, self.name), "spec": {}}

    @staticmethod
    def from_dict(d: dict[str, Any]) -> Placement:
        namespace, name, _ = _read_meta(d)
        return Placement(namespace=namespace, name=name)


@dataclass
class ClusterDecision:
    cluster_name: str
    reason: str = ""


@dataclass
class PlacementDecisionList:
    """A PlacementDecision object: one page of clusters chosen by a Placement."""
    kind: ClassVar[ObjectKind] = ObjectKind.PLACEMENT_DECISION

    namespace: str
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    decisions: list[ClusterDecision] = field(default_factory=list)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    @property
    def placement_name(self) -> str:
        return self.labels.get(PLACEMENT_LABEL, "")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "metadata": _meta(self.namespace, self.name, self.labels),
            "status": {"decisions": [
                {"clusterName": c.cluster_name, "reason": c.reason} for c in self.decisions
            ]},
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> PlacementDecisionList:
        namespace, name, labels = _read_meta(d)
        status = d.get("status", {}) or {}
        return PlacementDecisionList(
            namespace=namespace,
            name=name,
            labels=labels,
            decisions=[ClusterDecision(cluster_name=c.get("clusterName", ""),
                                       reason=c.get("reason", ""))
                       for c in status.get("decisions", []) or []],
        )


# ─── Kind Registry ──────────────────────────────────────────────────

_OBJECT_TYPES: dict[ObjectKind, Any] = {
    ObjectKind.POLICY: Policy,
    ObjectKind.POLICY_SET: PolicySet,
    ObjectKind.PLACEMENT_BINDING: PlacementBinding,
    ObjectKind.PLACEMENT_RULE: PlacementRule,
    ObjectKind.PLACEMENT: Placement,
    ObjectKind.PLACEMENT_DECISION: PlacementDecisionList,
}


def object_from_dict(d: dict[str, Any]):
    """Build the typed object for a manifest-shaped dict, dispatching on ``kind``."""
    if not isinstance(d, dict):
        raise ValueError(f"Expected a manifest mapping, got {type(d).__name__}")
    try:
        kind = ObjectKind(d.get("kind", ""))
    except ValueError:
        raise ValueError(f"Unsupported object kind: {d.get('kind')!r}")
    return _OBJECT_TYPES[kind].from_dict(d)
