# kubelab_sim/errors.py
from __future__ import annotations

from typing import Iterable, List


class KubeLabError(Exception):
    """Базовая ошибка ядра симулятора."""


class NotFoundError(KubeLabError):
    def __init__(self, kind: str, name: str):
        super().__init__(f'{kind} "{name}" not found')
        self.kind = kind
        self.name = name


class AlreadyExistsError(KubeLabError):
    def __init__(self, kind: str, name: str):
        super().__init__(f'{kind} "{name}" already exists')
        self.kind = kind
        self.name = name


class InvalidTransitionError(KubeLabError):
    """Запрошен недопустимый переход фазы (состояние не меняется)."""


class CommandSyntaxError(KubeLabError):
    """Некорректная команда или параметры (например, replicas < 0)."""


class EventStormError(KubeLabError):
    """Превышена допустимая глубина вложенных publish из слушателей."""


class ValidationError(KubeLabError):
    """
    Документ не прошёл семантическую проверку упражнения.
    Несёт список ошибок, а не одно сообщение.
    """

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors) or "validation failed")


class UnknownKindError(KubeLabError):
    def __init__(self, kind: str):
        super().__init__(f'unknown resource type "{kind}"')
        self.kind = kind
