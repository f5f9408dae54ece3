# tests/test_clock.py
import unittest

from kubelab_sim.sim.clock import SimulationClock
from kubelab_sim.types import POD, ResourceKey, EntityName


class TestSimulationClock(unittest.TestCase):

    def setUp(self):
        self.clock = SimulationClock()
        self.fired = []

    def test_fires_in_due_then_schedule_order(self):
        self.clock.schedule(2.0, lambda: self.fired.append("late"))
        self.clock.schedule(1.0, lambda: self.fired.append("a"))
        self.clock.schedule(1.0, lambda: self.fired.append("b"))

        fired = self.clock.advance(5.0)

        self.assertEqual(fired, 3)
        self.assertEqual(self.fired, ["a", "b", "late"])
        self.assertEqual(self.clock.now, 5.0)

    def test_timer_not_due_yet(self):
        self.clock.schedule(1.5, lambda: self.fired.append("x"))
        self.assertEqual(self.clock.advance(1.0), 0)
        self.assertEqual(self.clock.advance(0.5), 1)
        self.assertEqual(self.fired, ["x"])

    def test_callback_scheduled_inside_window_fires(self):
        def chain():
            self.fired.append(("first", self.clock.now))
            self.clock.schedule(0.5, lambda: self.fired.append(("second", self.clock.now)))

        self.clock.schedule(1.0, chain)
        self.clock.advance(2.0)

        self.assertEqual(self.fired, [("first", 1.0), ("second", 1.5)])

    def test_cancel_owner(self):
        key = ResourceKey(POD, EntityName("web-1"))
        other = ResourceKey(POD, EntityName("web-2"))
        self.clock.schedule(1.0, lambda: self.fired.append("start"), owner=key)
        self.clock.schedule(2.0, lambda: self.fired.append("remove"), owner=key)
        self.clock.schedule(1.0, lambda: self.fired.append("other"), owner=other)

        self.assertEqual(len(self.clock.pending(key)), 2)
        self.assertEqual(self.clock.cancel_owner(key), 2)
        self.assertEqual(self.clock.pending(key), [])

        self.clock.advance(3.0)
        self.assertEqual(self.fired, ["other"])

    def test_cancel_single_timer(self):
        timer = self.clock.schedule(1.0, lambda: self.fired.append("x"))
        self.clock.cancel(timer)
        self.clock.cancel(timer)
        self.assertEqual(self.clock.advance(2.0), 0)

    def test_negative_values_rejected(self):
        with self.assertRaises(ValueError):
            self.clock.schedule(-1.0, lambda: None)
        with self.assertRaises(ValueError):
            self.clock.advance(-0.1)


if __name__ == '__main__':
    unittest.main()
