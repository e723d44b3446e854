"""
Policy Status — Decision Set Builder

Merges every PlacementBinding in the root policy's namespace into one
authoritative set of clusters that should carry a replica.

Two passes, because restricted bindings (subFilter: restricted) are
filters over clusters that unrestricted bindings already selected:

  1. Unrestricted bindings add clusters. A binding asking for "enforce"
     upgrades the remediation override of a cluster already present;
     nothing downgrades it.
  2. Restricted bindings only touch clusters already present. Their
     placement records are kept only if they matched at least one.

If pass 1 selects nothing, pass 2 is skipped since it cannot add
anything. Placement records are returned sorted by binding name.

The override map is computed but ``build`` returns membership only;
``build_overrides`` exposes the map itself.
"""

from __future__ import annotations

from operator import attrgetter
from typing import Iterable

from infra.logging import get_logger, log_fields
from propagator.resolver import BindingResolver
from propagator.types import (
    ENFORCE,
    BindingOverrides,
    PlacementBinding,
    PlacementRecord,
    Policy,
    Target,
)

log = get_logger("decisions")

DecisionSet = set[Target]


def _wants_enforce(binding: PlacementBinding) -> bool:
    return binding.overrides.remediation_action.lower() == ENFORCE


def _sorted_records(records: list[PlacementRecord]) -> list[PlacementRecord]:
    return sorted(records, key=attrgetter("placement_binding"))


class DecisionSetBuilder:
    """Runs the BindingResolver over all bindings and merges the results."""

    def __init__(self, resolver: BindingResolver):
        self.resolver = resolver

    def build(
        self, root: Policy, bindings: Iterable[PlacementBinding],
    ) -> tuple[DecisionSet, list[PlacementRecord]]:
        overrides, records = self.build_overrides(root, bindings)
        return set(overrides), records

    def build_overrides(
        self, root: Policy, bindings: Iterable[PlacementBinding],
    ) -> tuple[dict[Target, BindingOverrides], list[PlacementRecord]]:
        bindings = list(bindings)
        decisions: dict[Target, BindingOverrides] = {}
        records: list[PlacementRecord] = []

        for binding in bindings:
            if binding.restricted:
                continue

            targets, binding_records = self.resolver.resolve(root, binding)
            if not targets:
                self._log_no_decisions(root, binding)

            for target in targets:
                if target in decisions:
                    if _wants_enforce(binding):
                        decisions[target].remediation_action = ENFORCE
                else:
                    decisions[target] = BindingOverrides(
                        remediation_action=binding.overrides.remediation_action.lower(),
                    )

            records.extend(binding_records)

        if not decisions:
            return {}, _sorted_records(records)

        for binding in bindings:
            if not binding.restricted:
                continue

            targets, binding_records = self.resolver.resolve(root, binding)
            if not targets:
                self._log_no_decisions(root, binding)

            matched = False
            for target in targets:
                existing = decisions.get(target)
                if existing is None:
                    continue
                matched = True
                if _wants_enforce(binding):
                    existing.remediation_action = ENFORCE

            if matched:
                records.extend(binding_records)

        return decisions, _sorted_records(records)

    @staticmethod
    def _log_no_decisions(root: Policy, binding: PlacementBinding):
        log.info(
            "No placement decisions to process for this policy from this binding",
            extra=log_fields(policyName=root.name, bindingName=binding.name),
        )
