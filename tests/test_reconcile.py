# tests/test_reconcile.py
"""
Replica reconciliation, scaling and rolling updates
"""

import unittest

from kubelab_sim.config import SimSettings
from kubelab_sim.sim.cluster import Cluster
from kubelab_sim.sim.commands import CommandEngine
from kubelab_sim.sim.reconcile import TEMPLATE_HASH_LABEL
from kubelab_sim.types import DEPLOYMENT, REPLICA_SET, POD, PENDING, RUNNING, TERMINATING


class ReconcileTestCase(unittest.TestCase):

    def setUp(self):
        self.cluster = Cluster(SimSettings())
        self.engine = CommandEngine(self.cluster)

    def run_ok(self, line):
        result = self.engine.run(line)
        self.assertTrue(result.ok, result.message)
        return result

    def pods(self, active=True):
        pods = self.cluster.owned_pods(DEPLOYMENT, "d", active_only=active)
        return pods

    def total_rs_replicas(self):
        return sum(rs.replicas for rs in self.cluster.replica_sets_of("d"))


class TestScenarios(ReconcileTestCase):

    def test_create_deployment_scenario(self):
        result = self.run_ok("create deployment d replicas=3")
        self.assertEqual(result.message, "deployment.apps/d created")

        replica_sets = self.cluster.replica_sets_of("d")
        self.assertEqual(len(replica_sets), 1)
        rs = replica_sets[0]
        self.assertEqual(rs.owner, "d")
        self.assertIn(TEMPLATE_HASH_LABEL, rs.selector)

        pods = self.pods()
        self.assertEqual(len(pods), 3)
        self.assertTrue(all(p.phase == PENDING for p in pods))
        self.assertTrue(all(p.owner == rs.name for p in pods))

        self.cluster.tick()
        self.assertTrue(all(p.phase == RUNNING for p in self.pods()))

    def test_scale_down_removes_newest_first(self):
        self.run_ok("create deployment d replicas=3")
        self.cluster.tick()
        oldest = self.pods()[0].name

        self.run_ok("scale deployment d replicas=1")

        all_pods = self.pods(active=False)
        terminating = [p for p in all_pods if p.phase == TERMINATING]
        self.assertEqual(len(terminating), 2)
        self.assertNotIn(oldest, [p.name for p in terminating])

        self.cluster.tick()
        remaining = self.cluster.list(POD)
        self.assertEqual([p.name for p in remaining], [oldest])
        self.assertEqual(remaining[0].phase, RUNNING)

    def test_scale_up_adds_pending_pods(self):
        self.run_ok("create deployment d replicas=1")
        self.cluster.tick()
        self.run_ok("scale deployment d replicas=4")

        phases = sorted(p.phase for p in self.pods())
        self.assertEqual(phases, [PENDING, PENDING, PENDING, RUNNING])

    def test_scale_to_zero_and_back(self):
        self.run_ok("create deployment d replicas=2")
        self.run_ok("scale deployment d replicas=0")
        self.cluster.tick()
        self.assertEqual(self.cluster.list(POD), [])
        self.assertEqual(len(self.cluster.replica_sets_of("d")), 1)

        self.run_ok("scale deployment d replicas=2")
        self.assertEqual(len(self.pods()), 2)

    def test_failed_pod_is_replaced(self):
        self.run_ok("create deployment d replicas=1")
        self.cluster.tick()
        pod = self.pods()[0].name

        self.run_ok(f"inject-fault pod {pod} type=exit")

        live = self.pods()
        self.assertEqual(len(live), 1)
        self.assertNotEqual(live[0].name, pod)
        self.assertEqual(self.cluster.get(POD, pod).phase, TERMINATING)

    def test_deleted_replicaset_is_recreated(self):
        self.run_ok("create deployment d replicas=2")
        rs = self.cluster.replica_sets_of("d")[0].name

        self.run_ok(f"delete rs {rs}")

        replica_sets = self.cluster.replica_sets_of("d")
        self.assertEqual(len(replica_sets), 1)
        self.assertNotEqual(replica_sets[0].name, rs)
        self.assertEqual(len(self.pods()), 2)


class TestRollout(ReconcileTestCase):

    def setUp(self):
        super().setUp()
        self.run_ok("create deployment d replicas=3 image=nginx:1")
        self.cluster.tick()

    def test_rollout_replaces_all_pods(self):
        result = self.run_ok("rollout deployment d image=nginx:2")
        self.assertIn("rolling out nginx:2", result.message)
        self.assertEqual(self.cluster.get(DEPLOYMENT, "d").revision, 2)

        for _ in range(6):
            self.assertLessEqual(len(self.cluster.replica_sets_of("d")), 2)
            self.assertEqual(self.total_rs_replicas(), 3)
            self.cluster.tick()

        replica_sets = self.cluster.replica_sets_of("d")
        self.assertEqual(len(replica_sets), 1)
        self.assertEqual(replica_sets[0].template.image, "nginx:2")
        pods = self.cluster.list(POD)
        self.assertEqual(len(pods), 3)
        self.assertTrue(all(p.image == "nginx:2" and p.phase == RUNNING for p in pods))
        self.assertEqual(len(self.cluster.list(REPLICA_SET)), 1)

    def test_each_step_moves_one_replica_across(self):
        self.run_ok("rollout deployment d image=nginx:2")
        self.assertEqual([rs.replicas for rs in self.cluster.replica_sets_of("d")], [2, 1])

        dep = self.cluster.registry.get(DEPLOYMENT, "d")
        self.assertTrue(self.cluster.reconciler.rollout_step(dep))
        self.assertEqual([rs.replicas for rs in self.cluster.replica_sets_of("d")], [1, 2])

    def test_same_image_is_noop(self):
        result = self.run_ok("rollout deployment d image=nginx:1")
        self.assertIn("unchanged", result.message)
        self.assertEqual(self.cluster.get(DEPLOYMENT, "d").revision, 1)

    def test_new_rollout_abandons_unfinished_generation(self):
        self.run_ok("rollout deployment d image=nginx:2")
        self.run_ok("rollout deployment d image=nginx:3")

        images = sorted(rs.template.image for rs in self.cluster.replica_sets_of("d"))
        self.assertEqual(images, ["nginx:1", "nginx:3"])

        for _ in range(8):
            self.cluster.tick()
        pods = self.cluster.list(POD)
        self.assertEqual(sorted(p.image for p in pods), ["nginx:3"] * 3)

    def test_rollback_mid_rollout(self):
        self.run_ok("rollout deployment d image=nginx:2")
        result = self.run_ok("rollout deployment d image=nginx:1")
        self.assertIn("rolled back", result.message)

        replica_sets = self.cluster.replica_sets_of("d")
        self.assertEqual(len(replica_sets), 1)
        self.assertEqual(replica_sets[0].replicas, 3)

        for _ in range(3):
            self.cluster.tick()
        self.assertEqual(sorted(p.image for p in self.cluster.list(POD)), ["nginx:1"] * 3)

    def test_scale_during_rollout_keeps_two_generations(self):
        self.run_ok("rollout deployment d image=nginx:2")
        for replicas in (5, 2, 4):
            self.run_ok(f"scale deployment d replicas={replicas}")
            self.assertLessEqual(len(self.cluster.replica_sets_of("d")), 2)
            self.assertEqual(self.total_rs_replicas(), replicas)
            self.cluster.tick()

        for _ in range(8):
            self.cluster.tick()
        self.assertEqual(len(self.cluster.replica_sets_of("d")), 1)
        self.assertEqual(len(self.pods()), 4)


if __name__ == '__main__':
    unittest.main()
