"""
Policy Status — Root Policy Status Propagator

Resolves which managed clusters should carry a replica of each root
policy, from the PlacementBindings in the policy's namespace, and folds
every replica's compliance back into the root policy's status.

Usage:
    from propagator import KeyedLockRegistry, RootPolicyStatusReconciler
    from propagator.store import InMemoryObjectStore

    store = InMemoryObjectStore(objects)
    reconciler = RootPolicyStatusReconciler.from_store(store, KeyedLockRegistry())
    reconciler.reconcile(ObjectKey("policies", "my-policy"))
"""

from propagator.types import (
    ObjectKey,
    ObjectKind,
    Policy,
    PolicyStatus,
    PolicySet,
    PlacementBinding,
    PlacementRef,
    PlacementRule,
    Placement,
    PlacementDecisionList,
    PlacementRecord,
    PerTargetStatus,
    Subject,
    Target,
    BindingOverrides,
    ComplianceState,
)
from propagator.errors import (
    PolicyStatusError,
    StoreError,
    NotFoundError,
    InvalidBindingError,
    PolicyLookupError,
    DecisionError,
    RefreshError,
    PersistError,
)
from propagator.locks import KeyedLockRegistry
from propagator.reconciler import RootPolicyStatusReconciler, RootStatusWriter

__all__ = [
    "ObjectKey",
    "ObjectKind",
    "Policy",
    "PolicyStatus",
    "PolicySet",
    "PlacementBinding",
    "PlacementRef",
    "PlacementRule",
    "Placement",
    "PlacementDecisionList",
    "PlacementRecord",
    "PerTargetStatus",
    "Subject",
    "Target",
    "BindingOverrides",
    "ComplianceState",
    "PolicyStatusError",
    "StoreError",
    "NotFoundError",
    "InvalidBindingError",
    "PolicyLookupError",
    "DecisionError",
    "RefreshError",
    "PersistError",
    "KeyedLockRegistry",
    "RootPolicyStatusReconciler",
    "RootStatusWriter",
]
