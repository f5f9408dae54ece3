# kubelab_sim/exercises/runner.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import yaml

from ..errors import ValidationError
from .catalog import BUILTIN_EXERCISES, Exercise, ValidationResult

log = logging.getLogger(__name__)

HINT_PENALTY = 0.1  # доля награды за каждую подсказку


@dataclass
class SubmissionResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    reward: int = 0
    parsed: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors), "reward": self.reward}


def compute_reward(base_reward: int, hints_used: int) -> int:
    """
    max(1, round(base * (1 - 0.1 * hints))) с округлением половины вверх:
    встроенный round() округляет .5 к чётному.
    """
    raw = base_reward * (1 - hints_used * HINT_PENALTY)
    return max(1, int(math.floor(raw + 0.5)))


def parse_documents(text: str) -> Any:
    """
    Один документ -> его значение, несколько (через ---) -> список.
    Пустой ввод считается ошибкой разбора.
    """
    docs = [d for d in yaml.safe_load_all(text) if d is not None]
    if not docs:
        raise yaml.YAMLError("document is empty")
    return docs[0] if len(docs) == 1 else docs


class ExerciseRunner:
    """
    Загруженное упражнение + счётчик подсказок + проверка решений.

    Ошибки разбора и валидации не выходят наружу: всё превращается
    в SubmissionResult.
    """

    def __init__(self, exercises: Optional[Iterable[Exercise]] = None):
        self._exercises: Dict[str, Exercise] = {}
        for ex in (BUILTIN_EXERCISES if exercises is None else exercises):
            self.register(ex)

        self._current: Optional[Exercise] = None
        self._hints_used = 0
        self.total_reward = 0

        self.on_success: Optional[Callable[[Exercise, int], None]] = None
        self.on_error: Optional[Callable[[List[str]], None]] = None

    def register(self, exercise: Exercise) -> None:
        self._exercises[exercise.id] = exercise

    def exercises(self) -> List[Exercise]:
        return list(self._exercises.values())

    # ------------------------------------------------------------------

    def load_exercise(self, exercise_id: str) -> Optional[Exercise]:
        exercise = self._exercises.get(exercise_id)
        if exercise is None:
            log.warning(f"Exercise {exercise_id} not found")
            return None
        self._current = exercise
        self._hints_used = 0
        log.info(f"Exercise loaded: {exercise.id} ({exercise.title})")
        return exercise

    @property
    def current(self) -> Optional[Exercise]:
        return self._current

    def reset(self) -> None:
        self._current = None
        self._hints_used = 0

    # ------------------------------------------------------------------
    # Подсказки
    # ------------------------------------------------------------------

    def next_hint(self) -> Optional[str]:
        if self._current is None or self._hints_used >= len(self._current.hints):
            return None
        self._hints_used += 1
        return self._current.hints[self._hints_used - 1]

    @property
    def hints_used(self) -> int:
        return self._hints_used

    @property
    def remaining_hints(self) -> int:
        if self._current is None:
            return 0
        return len(self._current.hints) - self._hints_used

    def reward_for(self, hints_used: Optional[int] = None) -> int:
        if self._current is None:
            return 0
        hints = self._hints_used if hints_used is None else hints_used
        return compute_reward(self._current.base_reward, hints)

    # ------------------------------------------------------------------
    # Проверка
    # ------------------------------------------------------------------

    def submit(self, text: str) -> SubmissionResult:
        exercise = self._current
        if exercise is None:
            return SubmissionResult(valid=False, errors=["No exercise loaded"])

        try:
            parsed = parse_documents(text or "")
        except yaml.YAMLError as e:
            errors = [f"YAML Parse Error: {e}"]
            self._report_errors(errors)
            return SubmissionResult(valid=False, errors=errors)

        try:
            result = exercise.solution_validator(parsed)
        except ValidationError as e:
            result = ValidationResult(valid=False, errors=e.errors)
        except Exception as e:
            log.exception(f"Validator of exercise {exercise.id} failed")
            result = ValidationResult(valid=False, errors=[f"Validator error: {type(e).__name__}: {e}"])

        if not result.valid:
            errors = list(result.errors) or ["Solution is not valid"]
            self._report_errors(errors)
            return SubmissionResult(valid=False, errors=errors, parsed=parsed)

        reward = self.reward_for()
        self.total_reward += reward
        log.info(f"Exercise {exercise.id} solved with {self._hints_used} hint(s): +{reward}")
        if self.on_success is not None:
            self.on_success(exercise, reward)
        return SubmissionResult(valid=True, reward=reward, parsed=parsed)

    def _report_errors(self, errors: List[str]) -> None:
        log.info(f"Exercise {self._current.id} submission rejected: {'; '.join(errors)}")
        if self.on_error is not None:
            self.on_error(errors)
