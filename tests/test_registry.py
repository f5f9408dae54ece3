# tests/test_registry.py
"""
Unit tests for the resource registry and the ownership graph
"""

import unittest

from kubelab_sim.errors import AlreadyExistsError, NotFoundError, UnknownKindError
from kubelab_sim.sim.events import EventBus
from kubelab_sim.sim.ownership import OwnershipGraph
from kubelab_sim.sim.registry import ResourceRegistry
from kubelab_sim.types import (
    DEPLOYMENT, REPLICA_SET, POD, SERVICE, PERSISTENT_VOLUME, PERSISTENT_VOLUME_CLAIM,
    ENTITY_CREATED, ENTITY_UPDATED, ENTITY_DELETED, PENDING, ResourceKey,
)


class TestResourceRegistry(unittest.TestCase):

    def setUp(self):
        self.bus = EventBus()
        self.registry = ResourceRegistry(self.bus)
        self.events = []
        for topic in (ENTITY_CREATED, ENTITY_UPDATED, ENTITY_DELETED):
            self.bus.subscribe(topic, self.events.append)

    def test_create_assigns_increasing_uids(self):
        a = self.registry.create(POD, "a")
        b = self.registry.create(POD, "b")
        self.assertLess(a.uid, b.uid)
        self.assertEqual(a.phase, PENDING)
        self.assertEqual([e.name for e in self.registry.list(POD)], ["a", "b"])

    def test_create_publishes_one_event_with_state(self):
        self.registry.create(SERVICE, "web", selector={"app": "web"}, port=8080)

        self.assertEqual(len(self.events), 1)
        ev = self.events[0]
        self.assertEqual((ev.kind, ev.name, ev.change_type), (SERVICE, "web", ENTITY_CREATED))
        self.assertEqual(ev.new_state["port"], 8080)
        self.assertEqual(ev.new_state["selector"], {"app": "web"})

    def test_name_collision_within_kind(self):
        self.registry.create(POD, "web")
        with self.assertRaises(AlreadyExistsError):
            self.registry.create(POD, "web")
        # другой kind: другое пространство имён
        self.registry.create(SERVICE, "web")
        self.assertEqual(len(self.events), 2)

    def test_update_only_publishes_real_changes(self):
        self.registry.create(POD, "p")
        self.registry.update(POD, "p", phase=PENDING)
        self.assertEqual(len(self.events), 1)

        self.registry.update(POD, "p", restart_count=1)
        self.assertEqual(len(self.events), 2)
        self.assertEqual(self.events[-1].change_type, ENTITY_UPDATED)
        self.assertEqual(self.events[-1].new_state["restart_count"], 1)

    def test_update_unknown_attribute(self):
        self.registry.create(POD, "p")
        with self.assertRaises(AttributeError):
            self.registry.update(POD, "p", color="red")

    def test_delete(self):
        self.registry.create(POD, "p")
        self.registry.delete(POD, "p")

        self.assertFalse(self.registry.exists(POD, "p"))
        self.assertEqual(self.events[-1].change_type, ENTITY_DELETED)
        self.assertIsNone(self.events[-1].new_state)
        with self.assertRaises(NotFoundError):
            self.registry.delete(POD, "p")

    def test_missing_and_unknown_kind(self):
        with self.assertRaises(NotFoundError) as ctx:
            self.registry.get(DEPLOYMENT, "nope")
        self.assertIn('"nope" not found', str(ctx.exception))
        self.assertIsNone(self.registry.find(DEPLOYMENT, "nope"))
        with self.assertRaises(UnknownKindError):
            self.registry.list("Ingress")

    def test_volume_phase_defaults(self):
        pv = self.registry.create(PERSISTENT_VOLUME, "data")
        pvc = self.registry.create(PERSISTENT_VOLUME_CLAIM, "claim")
        self.assertEqual(pv.phase, "Available")
        self.assertEqual(pvc.phase, PENDING)
        self.assertEqual(pvc.kind, PERSISTENT_VOLUME_CLAIM)


class TestOwnershipGraph(unittest.TestCase):

    def setUp(self):
        self.graph = OwnershipGraph()
        self.dep = ResourceKey(DEPLOYMENT, "web")
        self.rs = ResourceKey(REPLICA_SET, "web-abc")
        self.pods = [ResourceKey(POD, f"web-abc-{i}") for i in range(3)]
        self.graph.attach(self.dep, self.rs)
        for p in self.pods:
            self.graph.attach(self.rs, p)

    def test_children_in_attach_order(self):
        self.assertEqual(self.graph.children(self.rs), self.pods)
        self.assertEqual(self.graph.parent(self.pods[0]), self.rs)
        self.assertIsNone(self.graph.parent(self.dep))

    def test_cascade_order_is_children_first(self):
        order = self.graph.cascade_order(self.dep)
        self.assertEqual(order, self.pods + [self.rs, self.dep])

    def test_single_owner(self):
        other = ResourceKey(REPLICA_SET, "other")
        with self.assertRaises(ValueError):
            self.graph.attach(other, self.pods[0])
        # тот же владелец: идемпотентно
        self.graph.attach(self.rs, self.pods[0])
        self.assertEqual(len(self.graph.children(self.rs)), 3)

    def test_forget_detaches_both_directions(self):
        self.graph.forget(self.pods[1])
        self.assertEqual(self.graph.children(self.rs), [self.pods[0], self.pods[2]])

        self.graph.forget(self.rs)
        self.assertFalse(self.graph.has_children(self.dep))
        self.assertIsNone(self.graph.parent(self.pods[0]))

    def test_volume_binding(self):
        pv = ResourceKey(PERSISTENT_VOLUME, "data")
        pvc = ResourceKey(PERSISTENT_VOLUME_CLAIM, "claim")
        self.graph.bind(pv, pvc)

        self.assertEqual(self.graph.bound_peer(pv), pvc)
        self.assertEqual(self.graph.bound_peer(pvc), pv)
        with self.assertRaises(ValueError):
            self.graph.bind(pv, ResourceKey(PERSISTENT_VOLUME_CLAIM, "second"))

        self.assertEqual(self.graph.unbind(pvc), pv)
        self.assertIsNone(self.graph.bound_peer(pv))


if __name__ == '__main__':
    unittest.main()
