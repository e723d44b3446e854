"""
Policy Status — Event Mapping Tests

Tests:
  - root policy label parsing
  - replica status changes map to the root, root status changes do not
  - bindings, grouping objects, decisions and policy sets map to policies
  - EventRouter enqueues through a live store listener
"""

import os
import sys
import unittest

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fixtures.policies import (
    FaultyStore,
    binding,
    placement,
    placement_decision,
    placement_rule,
    policy_set,
    replica,
    root_policy,
)
from propagator.errors import StoreError
from propagator.mappers import (
    EventRouter,
    parse_root_policy_label,
    policies_for_binding,
    policies_for_grouping,
    replica_status_changed,
    root_for_policy,
    root_spec_changed,
)
from propagator.types import ROOT_POLICY_LABEL, GroupingKind, ObjectKey, ObjectKind, PolicyStatus


def _key(name, namespace="policies"):
    return ObjectKey(namespace, name)


class TestRootLabel(unittest.TestCase):

    def test_parse(self):
        self.assertEqual(parse_root_policy_label("policies.policy-a"), _key("policy-a"))

    def test_name_may_contain_dots(self):
        self.assertEqual(parse_root_policy_label("policies.a.b"), _key("a.b"))

    def test_invalid_labels(self):
        for value in ("", "nodot", ".name", "ns."):
            self.assertIsNone(parse_root_policy_label(value), value)

    def test_root_for_replica_and_root(self):
        root = root_policy()
        self.assertEqual(root_for_policy(replica(root, "clusterA")), root.key)
        self.assertEqual(root_for_policy(root), root.key)

    def test_root_for_bad_label(self):
        bad = replica(root_policy(), "clusterA")
        bad.labels[ROOT_POLICY_LABEL] = "garbage"
        self.assertIsNone(root_for_policy(bad))


class TestPolicyPredicates(unittest.TestCase):

    def test_replica_status_change(self):
        root = root_policy()
        old = replica(root, "clusterA", "Compliant")
        new = replica(root, "clusterA", "NonCompliant")
        self.assertTrue(replica_status_changed(old, new))
        self.assertFalse(replica_status_changed(old, replica(root, "clusterA", "Compliant")))

    def test_replica_create_and_delete(self):
        r = replica(root_policy(), "clusterA")
        self.assertTrue(replica_status_changed(None, r))
        self.assertTrue(replica_status_changed(r, None))

    def test_root_status_only_change_ignored(self):
        old = root_policy()
        new = root_policy()
        new.status = PolicyStatus(compliance_state="Compliant")
        self.assertFalse(root_spec_changed(old, new))
        self.assertFalse(replica_status_changed(old, new))

    def test_root_spec_change(self):
        self.assertTrue(root_spec_changed(root_policy(), root_policy(disabled=True)))
        self.assertTrue(root_spec_changed(None, root_policy()))


class TestObjectMapping(unittest.TestCase):

    def setUp(self):
        self.store = FaultyStore([
            policy_set("set1", ["policy-b", "policy-c"]),
            binding("b1", policies=["policy-a"], policy_sets=["set1"], rule="g1"),
            binding("b2", policies=["policy-d"], placement="pl1"),
            binding("b3", policies=["policy-e"], rule="other"),
        ])

    def test_binding_maps_policies_and_set_members(self):
        b = self.store.get(ObjectKind.PLACEMENT_BINDING, "policies", "b1")
        self.assertEqual(policies_for_binding(self.store, b),
                         [_key("policy-a"), _key("policy-b"), _key("policy-c")])

    def test_binding_with_missing_set(self):
        b = binding("b9", policies=["policy-a"], policy_sets=["missing"], rule="g1")
        self.assertEqual(policies_for_binding(self.store, b), [_key("policy-a")])

    def test_binding_with_failing_set_lookup(self):
        self.store.fail_get(ObjectKind.POLICY_SET, "policies", "set1", StoreError("down"))
        b = self.store.get(ObjectKind.PLACEMENT_BINDING, "policies", "b1")
        self.assertEqual(policies_for_binding(self.store, b), [_key("policy-a")])

    def test_grouping_maps_through_bindings(self):
        self.assertEqual(
            policies_for_grouping(self.store, GroupingKind.PLACEMENT_RULE, "policies", "g1"),
            [_key("policy-a"), _key("policy-b"), _key("policy-c")],
        )
        self.assertEqual(
            policies_for_grouping(self.store, GroupingKind.PLACEMENT, "policies", "pl1"),
            [_key("policy-d")],
        )
        # Same name, other kind
        self.assertEqual(
            policies_for_grouping(self.store, GroupingKind.PLACEMENT, "policies", "g1"), [])


class TestEventRouter(unittest.TestCase):

    def setUp(self):
        self.store = FaultyStore([
            root_policy("policy-a"),
            binding("b1", policies=["policy-a"], rule="g1"),
            binding("b2", policies=["policy-b"], placement="pl1"),
        ])
        self.enqueued = []
        EventRouter(self.store, self.enqueued.append).attach()

    def test_replica_status_enqueues_root(self):
        root = self.store.get(ObjectKind.POLICY, "policies", "policy-a")
        self.store.put(replica(root, "clusterA", "Compliant"))
        self.assertEqual(self.enqueued, [root.key])

    def test_root_status_write_does_not_enqueue(self):
        root = self.store.get(ObjectKind.POLICY, "policies", "policy-a")
        root.status = PolicyStatus(compliance_state="NonCompliant")
        self.store.update_status(root)
        self.assertEqual(self.enqueued, [])

    def test_placement_rule_change(self):
        self.store.put(placement_rule("g1", ["clusterA"]))
        self.assertEqual(self.enqueued, [_key("policy-a")])

    def test_placement_decision_change(self):
        self.store.put(placement("pl1"))
        self.enqueued.clear()
        self.store.put(placement_decision("pl1-1", "pl1", ["clusterA"]))
        self.assertEqual(self.enqueued, [_key("policy-b")])

    def test_binding_change_covers_old_and_new_subjects(self):
        self.store.put(binding("b1", policies=["policy-z"], rule="g1"))
        self.assertEqual(self.enqueued, [_key("policy-a"), _key("policy-z")])

    def test_binding_delete(self):
        self.store.delete(ObjectKind.PLACEMENT_BINDING, "policies", "b2")
        self.assertEqual(self.enqueued, [_key("policy-b")])

    def test_policy_set_change(self):
        self.store.put(policy_set("set1", ["policy-a", "policy-b"]))
        self.assertEqual(self.enqueued, [_key("policy-a"), _key("policy-b")])


if __name__ == "__main__":
    unittest.main()
