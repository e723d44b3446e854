"""
Policy Status — Root Policy Status Reconciler

Recomputes a root policy's status from the current bindings, grouping
objects and replicated policies, and writes it back. A request is always
for a root policy, never for a single replica, so a burst of replica
status changes collapses into a few consistent root status writes.

Every read-modify-write of a root policy's status happens while holding
that policy's lock in the shared KeyedLockRegistry.

Stages and how each one fails:
  1. load root        absent → no-op; other errors raised
  2. decisions        any error raised as DecisionError (fail-fast)
  3. cluster status   first error logged, partial status kept
  4. refresh root     failure logged, the stage-1 copy is used
  5. overwrite status
  6. persist          failure raised as PersistError
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from infra.logging import get_logger, log_fields
from propagator.aggregator import PerTargetStatusAggregator
from propagator.decisions import DecisionSetBuilder
from propagator.errors import (
    DecisionError,
    NotFoundError,
    PersistError,
    PolicyStatusError,
    RefreshError,
)
from propagator.locks import KeyedLockRegistry
from propagator.lookups import (
    DecisionLookup,
    MembershipLookup,
    StoreDecisionLookup,
    StoreMembershipLookup,
    calculate_root_compliance,
)
from propagator.resolver import BindingResolver
from propagator.store import ObjectStore
from propagator.types import (
    ObjectKey,
    ObjectKind,
    PerTargetStatus,
    Policy,
    PolicyStatus,
    Target,
)

log = get_logger("reconciler")

ComplianceFn = Callable[[list[PerTargetStatus]], str]


@dataclass
class StatusUpdate:
    """What one status update computed, and whether it changed anything."""
    key: ObjectKey
    status: PolicyStatus
    decisions: list[Target] = field(default_factory=list)
    changed: bool = False


@dataclass
class ReconcileResult:
    key: ObjectKey
    found: bool = True
    update: StatusUpdate | None = None


class RootStatusWriter:
    """Computes and persists root policy status under the per-policy lock."""

    def __init__(
        self,
        store: ObjectStore,
        locks: KeyedLockRegistry,
        builder: DecisionSetBuilder,
        aggregator: PerTargetStatusAggregator,
        compliance: ComplianceFn = calculate_root_compliance,
    ):
        self.store = store
        self.locks = locks
        self.builder = builder
        self.aggregator = aggregator
        self.compliance = compliance

    def update_status(self, key: ObjectKey) -> StatusUpdate | None:
        """
        Returns None when the root policy no longer exists.
        Raises DecisionError, PersistError, or StoreError for retry.
        """
        fields = log_fields(key)
        log.debug("Acquiring the lock for the root policy", extra=fields)

        with self.locks.acquire(key):
            try:
                root = self.store.get(ObjectKind.POLICY, key.namespace, key.name)
            except NotFoundError:
                log.debug("The root policy has been deleted. Doing nothing.", extra=fields)
                return None
            except PolicyStatusError:
                log.error("Failed to get the root policy", exc_info=True, extra=fields)
                raise

            log.info("Updating the root policy status", extra=fields)
            return self._update(root)

    def _update(self, root: Policy) -> StatusUpdate:
        fields = log_fields(root)

        try:
            bindings = self.store.list(ObjectKind.PLACEMENT_BINDING, root.namespace)
            decisions, placements = self.builder.build(root, bindings)
        except PolicyStatusError as e:
            log.info("Failed to get any placement decisions. Giving up on the request.",
                     extra=log_fields(root, error=str(e)))
            raise DecisionError(
                f"could not get the placement decisions for {root.key}: {e}"
            ) from e

        statuses, lookup_err = self.aggregator.aggregate(root, decisions)
        if lookup_err is not None:
            # A new replica is expected to be missing until it is created
            log.error(
                "Failed to get at least one replicated policy, but that may be expected. Ignoring.",
                exc_info=lookup_err, extra=fields,
            )

        try:
            root = self._refresh(root)
        except RefreshError as e:
            log.error("Failed to refresh the cached policy. Will use existing policy.",
                      exc_info=e, extra=fields)

        new_status = PolicyStatus(
            placement=placements,
            status=statuses,
            compliance_state=self.compliance(statuses),
        )
        update = StatusUpdate(
            key=root.key,
            status=new_status,
            decisions=sorted(decisions),
            changed=new_status != root.status,
        )
        if not update.changed:
            log.debug("Root policy status is unchanged. Skipping the update.", extra=fields)
            return update

        root.status = new_status
        try:
            self.store.update_status(root)
        except Exception as e:
            raise PersistError(f"failed to update the status of {root.key}: {e}") from e
        return update

    def _refresh(self, root: Policy) -> Policy:
        try:
            return self.store.get(ObjectKind.POLICY, root.namespace, root.name)
        except Exception as e:
            raise RefreshError(f"failed to refresh {root.key}: {e}") from e


class RootPolicyStatusReconciler:
    """
    Entry point driven by the reconcile worker.

    Root policy exists → update its status, raising for retry.
    Root policy absent → nothing to do.
    """

    def __init__(self, writer: RootStatusWriter):
        self.writer = writer

    @classmethod
    def from_store(
        cls,
        store: ObjectStore,
        locks: KeyedLockRegistry,
        decisions: DecisionLookup | None = None,
        membership: MembershipLookup | None = None,
        compliance: ComplianceFn = calculate_root_compliance,
    ) -> RootPolicyStatusReconciler:
        """Wire the default store-backed collaborators around a shared lock registry."""
        resolver = BindingResolver(
            store,
            decisions or StoreDecisionLookup(store),
            membership or StoreMembershipLookup(store),
        )
        writer = RootStatusWriter(
            store=store,
            locks=locks,
            builder=DecisionSetBuilder(resolver),
            aggregator=PerTargetStatusAggregator(store),
            compliance=compliance,
        )
        return cls(writer)

    def reconcile(self, key: ObjectKey) -> ReconcileResult:
        log.debug("Reconciling the root policy status", extra=log_fields(key))
        update = self.writer.update_status(key)
        return ReconcileResult(key=key, found=update is not None, update=update)

    __call__ = reconcile
