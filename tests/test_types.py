"""Tests for the manifest-shaped type definitions."""

import os
import sys
import unittest

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from propagator.types import (
    GroupingKind,
    ObjectKey,
    PerTargetStatus,
    PlacementBinding,
    PlacementRecord,
    PolicyStatus,
    Target,
    object_from_dict,
    replica_name,
)


class TestIdentity(unittest.TestCase):

    def test_object_key_str_and_order(self):
        self.assertEqual(str(ObjectKey("policies", "p1")), "policies/p1")
        self.assertLess(ObjectKey("a", "z"), ObjectKey("b", "a"))

    def test_replica_name(self):
        self.assertEqual(replica_name(ObjectKey("policies", "policy-a")), "policies.policy-a")

    def test_target_is_hashable_value(self):
        self.assertEqual(len({Target("c1", "c1"), Target("c1", "c1"), Target("c1", "other")}), 2)


class TestGroupingKind(unittest.TestCase):

    def test_api_groups(self):
        self.assertEqual(GroupingKind.PLACEMENT_RULE.api_group, "apps.open-cluster-management.io")
        self.assertEqual(GroupingKind.PLACEMENT.api_group, "cluster.open-cluster-management.io")

    def test_parse(self):
        self.assertIs(GroupingKind.parse("Placement"), GroupingKind.PLACEMENT)
        self.assertIsNone(GroupingKind.parse("placement"))


class TestManifests(unittest.TestCase):

    def test_placement_record_omits_empty_fields(self):
        self.assertEqual(
            PlacementRecord(placement_binding="b1", placement="pl1").to_dict(),
            {"placementBinding": "b1", "placement": "pl1"},
        )

    def test_status_round_trip(self):
        status = PolicyStatus(
            placement=[PlacementRecord("b1", policy_set="s1", placement_rule="g1")],
            status=[PerTargetStatus("c1", "c1", "Compliant"), PerTargetStatus("c2", "c2")],
            compliance_state="Compliant",
        )
        d = status.to_dict()
        self.assertEqual(d["status"][1], {"clustername": "c2", "clusternamespace": "c2"})
        self.assertEqual(PolicyStatus.from_dict(d), status)

    def test_binding_from_manifest(self):
        b = object_from_dict({
            "kind": "PlacementBinding",
            "metadata": {"namespace": "policies", "name": "b1"},
            "placementRef": {"apiGroup": "cluster.open-cluster-management.io",
                             "kind": "Placement", "name": "pl1"},
            "subjects": [{"apiGroup": "policy.open-cluster-management.io",
                          "kind": "PolicySet", "name": "s1"}],
            "subFilter": "restricted",
            "bindingOverrides": {"remediationAction": "Enforce"},
        })
        self.assertIsInstance(b, PlacementBinding)
        self.assertTrue(b.restricted)
        self.assertEqual(b.placement_ref.kind, "Placement")
        self.assertEqual(b.subjects[0].name, "s1")
        self.assertEqual(b.overrides.remediation_action, "Enforce")

    def test_unsupported_kind(self):
        with self.assertRaises(ValueError):
            object_from_dict({"kind": "ConfigMap", "metadata": {"name": "x"}})


if __name__ == "__main__":
    unittest.main()
