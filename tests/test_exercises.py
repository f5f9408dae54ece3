# tests/test_exercises.py
"""
Unit tests for the exercise validation engine
"""

import unittest

from kubelab_sim.errors import ValidationError
from kubelab_sim.exercises.catalog import (
    BUILTIN_EXERCISES, Exercise, ValidationResult, exercises_by_level, get_exercise,
)
from kubelab_sim.exercises.runner import ExerciseRunner, compute_reward


def _needs_ok(parsed):
    if isinstance(parsed, dict) and parsed.get("ok") is True:
        return ValidationResult.from_errors([])
    return ValidationResult.from_errors(["ok must be true"])


def _raises(parsed):
    raise ValidationError(["first problem", "second problem"])


class TestRewardFormula(unittest.TestCase):

    def test_ten_percent_per_hint(self):
        self.assertEqual([compute_reward(100, h) for h in range(4)], [100, 90, 80, 70])

    def test_half_rounds_up(self):
        # 5 * 0.9 = 4.5 -> 5 (встроенный round дал бы 4)
        self.assertEqual(compute_reward(5, 1), 5)

    def test_never_below_one(self):
        self.assertEqual(compute_reward(5, 10), 1)
        self.assertEqual(compute_reward(1, 3), 1)


class TestExerciseRunner(unittest.TestCase):

    def setUp(self):
        self.exercise = Exercise(
            id="x",
            level=1,
            title="X",
            prompt="Set ok to true",
            solution_validator=_needs_ok,
            hints=["first", "second"],
            base_reward=100,
        )
        self.runner = ExerciseRunner([self.exercise])
        self.successes = []
        self.failures = []
        self.runner.on_success = lambda ex, reward: self.successes.append((ex.id, reward))
        self.runner.on_error = self.failures.append

    def test_hints_then_valid_submission(self):
        self.runner.load_exercise("x")
        self.assertEqual(self.runner.next_hint(), "first")
        self.assertEqual(self.runner.next_hint(), "second")
        self.assertIsNone(self.runner.next_hint())
        self.assertEqual(self.runner.hints_used, 2)
        self.assertEqual(self.runner.remaining_hints, 0)

        result = self.runner.submit("ok: true")

        self.assertTrue(result.valid)
        self.assertEqual(result.reward, 80)
        self.assertEqual(self.successes, [("x", 80)])
        self.assertEqual(self.runner.total_reward, 80)

    def test_invalid_submission_and_reload(self):
        self.runner.load_exercise("x")
        self.runner.next_hint()

        result = self.runner.submit("ok: false")
        self.assertFalse(result.valid)
        self.assertEqual(result.errors, ["ok must be true"])
        self.assertEqual(result.reward, 0)
        self.assertEqual(self.failures, [["ok must be true"]])
        self.assertEqual(self.successes, [])

        self.runner.load_exercise("x")
        self.assertEqual(self.runner.hints_used, 0)
        result = self.runner.submit("ok: true")
        self.assertEqual(result.reward, 100)

    def test_parse_error_is_single_error(self):
        self.runner.load_exercise("x")
        for text in ("ok: [true", "", "# only a comment\n"):
            with self.subTest(text=text):
                result = self.runner.submit(text)
                self.assertFalse(result.valid)
                self.assertEqual(len(result.errors), 1)
                self.assertTrue(result.errors[0].startswith("YAML Parse Error:"))

    def test_multiple_documents_become_a_list(self):
        seen = []
        self.runner.register(Exercise(
            id="multi", level=3, title="Multi", prompt="",
            solution_validator=lambda parsed: seen.append(parsed) or ValidationResult(True),
        ))
        self.runner.load_exercise("multi")
        self.runner.submit("a: 1\n---\nb: 2\n")
        self.runner.submit("a: 1\n---\n")
        self.assertEqual(seen, [[{"a": 1}, {"b": 2}], {"a": 1}])

    def test_validation_error_is_converted(self):
        self.runner.register(Exercise(id="strict", level=1, title="", prompt="", solution_validator=_raises))
        self.runner.load_exercise("strict")
        result = self.runner.submit("a: 1")
        self.assertEqual(result.errors, ["first problem", "second problem"])

    def test_crashing_validator_becomes_single_error(self):
        self.runner.register(Exercise(
            id="fragile", level=1, title="", prompt="",
            solution_validator=lambda parsed: parsed["spec"]["replicas"],
        ))
        self.runner.load_exercise("fragile")

        with self.assertLogs("kubelab_sim.exercises.runner", level="ERROR"):
            result = self.runner.submit("kind: Pod")

        self.assertFalse(result.valid)
        self.assertEqual(len(result.errors), 1)
        self.assertIn("KeyError", result.errors[0])
        self.assertEqual(self.failures, [result.errors])

    def test_no_exercise_loaded(self):
        result = self.runner.submit("ok: true")
        self.assertEqual(result.errors, ["No exercise loaded"])
        self.assertIsNone(self.runner.next_hint())

    def test_unknown_exercise(self):
        with self.assertLogs("kubelab_sim.exercises.runner", level="WARNING"):
            self.assertIsNone(self.runner.load_exercise("nope"))
        self.assertIsNone(self.runner.current)


class TestBuiltinCatalog(unittest.TestCase):

    def setUp(self):
        self.runner = ExerciseRunner()

    def test_catalog_shape(self):
        self.assertEqual(len(BUILTIN_EXERCISES), 9)
        self.assertEqual([len(exercises_by_level(lvl)) for lvl in (1, 2, 3)], [3, 3, 3])
        self.assertEqual({ex.base_reward for ex in exercises_by_level(2)}, {50})
        self.assertEqual(len({ex.id for ex in BUILTIN_EXERCISES}), 9)
        self.assertIsNone(get_exercise("nope"))

    def test_complete_pod(self):
        self.runner.load_exercise("yaml-beginner-2")
        bad = self.runner.submit(get_exercise("yaml-beginner-2").starter)
        self.assertFalse(bad.valid)
        self.assertEqual(bad.errors, ["spec.containers must be an array"])

        good = self.runner.submit(
            "apiVersion: v1\n"
            "kind: Pod\n"
            "metadata:\n"
            "  name: web-pod\n"
            "spec:\n"
            "  containers:\n"
            "  - name: web\n"
            "    image: nginx:1.21\n"
        )
        self.assertTrue(good.valid, good.errors)
        self.assertEqual(good.reward, 25)

    def test_resource_limits_starter_is_incomplete(self):
        self.runner.load_exercise("yaml-intermediate-2")
        result = self.runner.submit(get_exercise("yaml-intermediate-2").starter)
        self.assertEqual(result.errors, ["resources field is missing"])

    def test_multi_resource(self):
        self.runner.load_exercise("yaml-advanced-1")
        text = (
            "apiVersion: apps/v1\n"
            "kind: Deployment\n"
            "metadata:\n"
            "  name: api\n"
            "spec:\n"
            "  replicas: 2\n"
            "  template:\n"
            "    spec:\n"
            "      containers:\n"
            "      - name: api\n"
            "        image: myapp:1.0\n"
            "---\n"
            "apiVersion: v1\n"
            "kind: Service\n"
            "metadata:\n"
            "  name: api-service\n"
            "spec:\n"
            "  type: ClusterIP\n"
            "  ports:\n"
            "  - port: 80\n"
        )
        self.assertTrue(self.runner.submit(text).valid)

        missing_service = text.split("---")[0]
        result = self.runner.submit(missing_service)
        self.assertEqual(result.errors, ["Service resource not found"])

    def test_find_and_fix_rejects_quoted_numbers(self):
        self.runner.load_exercise("yaml-advanced-3")
        text = (
            "apiVersion: apps/v1\n"
            "kind: Deployment\n"
            "metadata:\n"
            "  name: broken-deploy\n"
            "spec:\n"
            "  replicas: {replicas}\n"
            "  template:\n"
            "    spec:\n"
            "      containers:\n"
            "      - name: app\n"
            "        image: nginx\n"
            "        ports:\n"
            "        - containerPort: 80\n"
            "        resources:\n"
            "          requests:\n"
            "            cpu: 100m\n"
        )
        self.assertTrue(self.runner.submit(text.format(replicas="3")).valid)

        result = self.runner.submit(text.format(replicas='"3"'))
        self.assertEqual(result.errors, ["spec.replicas must be a number (3), not a string"])


if __name__ == '__main__':
    unittest.main()
