"""
Policy Status — Per-Cluster Status Aggregator

Reads the replica of the root policy in every decided cluster namespace
and reports its compliance. Best-effort: a missing replica is reported
as pending (empty compliance), and a failed read is remembered and
returned after every other cluster has been read.
"""

from __future__ import annotations

from operator import attrgetter
from typing import Iterable

from infra.logging import get_logger
from propagator.errors import NotFoundError, PolicyLookupError
from propagator.store import ObjectStore
from propagator.types import ObjectKind, PerTargetStatus, Policy, Target, replica_name

log = get_logger("aggregator")


class PerTargetStatusAggregator:
    def __init__(self, store: ObjectStore):
        self.store = store

    def aggregate(
        self, root: Policy, decisions: Iterable[Target],
    ) -> tuple[list[PerTargetStatus], PolicyLookupError | None]:
        """Statuses sorted by cluster name, plus the first lookup error if any."""
        if root.disabled:
            return [], None

        name = replica_name(root.key)
        statuses: list[PerTargetStatus] = []
        first_error: PolicyLookupError | None = None

        for target in decisions:
            compliance = ""
            try:
                replica = self.store.get(ObjectKind.POLICY, target.cluster_namespace, name)
                compliance = replica.status.compliance_state
            except NotFoundError:
                pass
            except Exception as e:
                log.debug("Failed to get replicated policy %s/%s: %s",
                          target.cluster_namespace, name, e)
                if first_error is None:
                    first_error = PolicyLookupError(
                        f"failed to get replicated policy {target.cluster_namespace}/{name}: {e}"
                    )
                    first_error.__cause__ = e

            statuses.append(PerTargetStatus(
                cluster_name=target.cluster_name,
                cluster_namespace=target.cluster_namespace,
                compliance_state=compliance,
            ))

        statuses.sort(key=attrgetter("cluster_name", "cluster_namespace"))
        return statuses, first_error
