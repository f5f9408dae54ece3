# tests/test_lifecycle.py
"""
Unit tests for the pod state machine and scheduling
"""

import unittest

from kubelab_sim.config import SimSettings
from kubelab_sim.errors import InvalidTransitionError
from kubelab_sim.sim.cluster import Cluster
from kubelab_sim.sim.lifecycle import TRANSITIONS, can_transition
from kubelab_sim.types import (
    NODE, POD, ENTITY_UPDATED,
    PENDING, RUNNING, SUCCEEDED, FAILED, CRASH_LOOP_BACK_OFF, TERMINATING, UNKNOWN,
)


def make_cluster(**overrides):
    return Cluster(SimSettings(**overrides))


class TestTransitionTable(unittest.TestCase):

    def test_terminating_is_final(self):
        for dst in TRANSITIONS:
            self.assertFalse(can_transition(TERMINATING, dst))

    def test_crash_loop_exits(self):
        self.assertTrue(can_transition(CRASH_LOOP_BACK_OFF, RUNNING))
        self.assertTrue(can_transition(CRASH_LOOP_BACK_OFF, TERMINATING))
        self.assertFalse(can_transition(CRASH_LOOP_BACK_OFF, PENDING))
        self.assertFalse(can_transition(CRASH_LOOP_BACK_OFF, SUCCEEDED))

    def test_pending_cannot_crash(self):
        self.assertFalse(can_transition(PENDING, CRASH_LOOP_BACK_OFF))
        self.assertFalse(can_transition(PENDING, FAILED))


class TestPodLifecycle(unittest.TestCase):

    def setUp(self):
        self.cluster = make_cluster()
        self.registry = self.cluster.registry
        self.lifecycle = self.cluster.lifecycle
        self.updates = []
        self.cluster.subscribe(ENTITY_UPDATED, self.updates.append)

    def _new_pod(self, name="p"):
        pod = self.registry.create(POD, name, labels={"run": name})
        self.lifecycle.admit(pod)
        return pod

    def test_startup_after_delay(self):
        pod = self._new_pod()
        self.assertEqual(pod.phase, PENDING)
        self.assertEqual(pod.node, "node-1")

        self.cluster.clock.advance(0.5)
        self.assertEqual(pod.phase, PENDING)
        self.cluster.clock.advance(0.5)
        self.assertEqual(pod.phase, RUNNING)

    def test_scheduler_spreads_pods(self):
        pods = [self._new_pod(f"p{i}") for i in range(4)]
        self.assertEqual([p.node for p in pods], ["node-1", "node-2", "node-3", "node-1"])

    def test_crash_and_fix_increment_restart_count(self):
        pod = self._new_pod()
        self.cluster.clock.advance(1.0)

        counts = []
        for _ in range(3):
            self.lifecycle.crash(pod.name)
            self.assertEqual(pod.phase, CRASH_LOOP_BACK_OFF)
            self.lifecycle.fix(pod.name)
            self.assertEqual(pod.phase, RUNNING)
            counts.append(pod.restart_count)

        self.assertEqual(counts, [1, 2, 3])

    def test_crash_loop_only_leaves_via_fix(self):
        pod = self._new_pod()
        self.cluster.clock.advance(1.0)
        self.lifecycle.crash(pod.name)

        with self.assertRaises(InvalidTransitionError):
            self.lifecycle.crash(pod.name)
        with self.assertRaises(InvalidTransitionError):
            self.lifecycle.succeed(pod.name)
        # время само по себе не лечит
        self.cluster.clock.advance(60.0)
        self.assertEqual(pod.phase, CRASH_LOOP_BACK_OFF)
        self.assertEqual(pod.restart_count, 0)

    def test_fix_requires_crash_loop(self):
        pod = self._new_pod()
        self.cluster.clock.advance(1.0)
        before = len(self.updates)

        with self.assertRaises(InvalidTransitionError):
            self.lifecycle.fix(pod.name)

        self.assertEqual(pod.phase, RUNNING)
        self.assertEqual(len(self.updates), before)

    def test_one_update_event_per_phase_change(self):
        pod = self._new_pod()
        self.cluster.clock.advance(1.0)
        self.updates.clear()

        self.lifecycle.crash(pod.name)

        self.assertEqual(len(self.updates), 1)
        self.assertEqual(self.updates[0].new_state["phase"], CRASH_LOOP_BACK_OFF)

    def test_terminate_before_startup_is_not_resurrected(self):
        pod = self._new_pod()
        self.lifecycle.terminate(pod.name)
        self.assertEqual(pod.phase, TERMINATING)

        self.cluster.clock.advance(5.0)

        self.assertFalse(self.registry.exists(POD, pod.name))

    def test_terminate_is_idempotent(self):
        pod = self._new_pod()
        self.lifecycle.terminate(pod.name)
        self.lifecycle.terminate(pod.name)
        self.assertEqual(len(self.cluster.clock.pending()), 1)

    def test_unknown_and_recover(self):
        pod = self._new_pod()
        self.cluster.clock.advance(1.0)

        self.lifecycle.mark_unknown(pod.name)
        self.assertEqual(pod.phase, UNKNOWN)
        self.lifecycle.recover(pod.name)
        self.assertEqual(pod.phase, RUNNING)
        self.assertIsNone(pod.phase_before_fault)

        with self.assertRaises(InvalidTransitionError):
            self.lifecycle.recover(pod.name)

    def test_recover_pending_restarts_startup(self):
        pod = self._new_pod()
        self.lifecycle.mark_unknown(pod.name)
        self.cluster.clock.advance(5.0)
        self.assertEqual(pod.phase, UNKNOWN)

        self.lifecycle.recover(pod.name)
        self.assertEqual(pod.phase, PENDING)
        self.cluster.clock.advance(1.0)
        self.assertEqual(pod.phase, RUNNING)


class TestScheduling(unittest.TestCase):

    def test_unschedulable_until_capacity_appears(self):
        cluster = make_cluster(initial_nodes=1, node_capacity=1)
        lifecycle = cluster.lifecycle

        first = cluster.registry.create(POD, "first")
        second = cluster.registry.create(POD, "second")
        self.assertTrue(lifecycle.admit(first))
        self.assertFalse(lifecycle.admit(second))
        self.assertEqual(second.reason, "Unschedulable")
        self.assertIsNone(second.node)

        cluster.registry.create(NODE, "node-2")
        self.assertEqual(lifecycle.retry_unscheduled(), 1)
        self.assertEqual(second.node, "node-2")
        self.assertIsNone(second.reason)

    def test_not_ready_node_is_skipped(self):
        cluster = make_cluster(initial_nodes=2)
        cluster.registry.update(NODE, "node-1", ready=False)

        pod = cluster.registry.create(POD, "p")
        cluster.lifecycle.admit(pod)

        self.assertEqual(pod.node, "node-2")


if __name__ == '__main__':
    unittest.main()
