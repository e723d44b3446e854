"""
Policy Status — Binding Resolver

Decides what a single PlacementBinding means for one root policy:
whether any of its subjects select the policy (directly, or through a
policy set the policy belongs to), which grouping object it points at,
and which clusters that grouping object currently selects.
"""

from __future__ import annotations

from infra.logging import get_logger, log_fields
from propagator.errors import (
    InvalidBindingError,
    NotFoundError,
    PolicyLookupError,
    StoreError,
)
from propagator.lookups import DecisionLookup, MembershipLookup
from propagator.store import ObjectStore
from propagator.types import (
    POLICY_API_GROUP,
    GroupingKind,
    PlacementBinding,
    PlacementRecord,
    Policy,
    SubjectKind,
    Target,
)

log = get_logger("resolver")


def valid_grouping_kind(binding: PlacementBinding) -> GroupingKind | None:
    """The grouping kind of a well-formed placementRef, else None."""
    ref = binding.placement_ref
    kind = GroupingKind.parse(ref.kind)
    if kind is None or not ref.name or ref.api_group != kind.api_group:
        return None
    return kind


class BindingResolver:
    """
    Resolves one binding against one root policy.

    ``resolve`` returns ``(targets, records)``:
      - ([], [])        the binding does not select the policy
      - ([], records)   it does, but the policy is disabled
      - (targets, records) otherwise
    """

    def __init__(
        self,
        store: ObjectStore,
        decisions: DecisionLookup,
        membership: MembershipLookup,
    ):
        self.store = store
        self.decisions = decisions
        self.membership = membership

    def resolve(
        self, root: Policy, binding: PlacementBinding,
    ) -> tuple[list[Target], list[PlacementRecord]]:
        grouping = valid_grouping_kind(binding)
        if grouping is None:
            raise InvalidBindingError(
                f"placement binding {binding.namespace}/{binding.name} reference is not valid"
            )

        records = self._match_subjects(root, binding)
        if not records:
            return [], []

        # Empty when the grouping object doesn't exist yet
        grouping_name = self._grouping_name(binding, grouping)
        for record in records:
            if grouping is GroupingKind.PLACEMENT_RULE:
                record.placement_rule = grouping_name
            else:
                record.placement = grouping_name

        if root.disabled:
            return [], records

        try:
            targets = self.decisions.get_decisions(binding)
        except (InvalidBindingError, PolicyLookupError):
            raise
        except Exception as e:
            raise PolicyLookupError(
                f"failed to get placement decisions for binding "
                f"{binding.namespace}/{binding.name}: {e}"
            ) from e

        return list(targets), records

    def _match_subjects(self, root: Policy, binding: PlacementBinding) -> list[PlacementRecord]:
        records: list[PlacementRecord] = []
        policy_found = False
        seen_sets: set[str] = set()

        for subject in binding.subjects:
            if subject.api_group != POLICY_API_GROUP:
                continue

            kind = SubjectKind.parse(subject.kind)
            if kind is SubjectKind.POLICY:
                if not policy_found and subject.name == root.name:
                    policy_found = True
                    records.append(PlacementRecord(placement_binding=binding.name))
            elif kind is SubjectKind.POLICY_SET:
                if subject.name in seen_sets:
                    continue
                seen_sets.add(subject.name)
                if self._in_policy_set(root.name, subject.name, binding.namespace):
                    records.append(PlacementRecord(
                        placement_binding=binding.name,
                        policy_set=subject.name,
                    ))

        return records

    def _in_policy_set(self, policy_name: str, policy_set_name: str, namespace: str) -> bool:
        try:
            return self.membership.is_member(policy_name, policy_set_name, namespace)
        except Exception as e:
            log.error(
                "Failed to get the policyset: %s", e,
                extra=log_fields(policyName=policy_name, policySetName=policy_set_name,
                                 policyNamespace=namespace),
            )
            return False

    def _grouping_name(self, binding: PlacementBinding, grouping: GroupingKind) -> str:
        name = binding.placement_ref.name
        try:
            obj = self.store.get(grouping.object_kind, binding.namespace, name)
        except NotFoundError:
            return ""
        except StoreError as e:
            raise PolicyLookupError(
                f"failed to check for {grouping.value} '{name}': {e}"
            ) from e
        return obj.name
