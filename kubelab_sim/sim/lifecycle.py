# kubelab_sim/sim/lifecycle.py
from __future__ import annotations

import logging
from typing import Callable, Dict, FrozenSet, Optional

from ..config import SimSettings
from ..errors import InvalidTransitionError
from ..model.entities import Pod, key_of
from ..types import (
    NODE, POD, ResourceKey,
    PENDING, RUNNING, SUCCEEDED, FAILED, CRASH_LOOP_BACK_OFF, TERMINATING, UNKNOWN,
)
from .clock import SimulationClock
from .ownership import OwnershipGraph
from .registry import ResourceRegistry
from .selector import select_pods_by_node

log = logging.getLogger(__name__)

# Допустимые переходы. Выход из Unknown: только восстановлением
# фазы, которая была до сбоя (recover), либо в Terminating.
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({RUNNING, TERMINATING, UNKNOWN}),
    RUNNING: frozenset({SUCCEEDED, FAILED, CRASH_LOOP_BACK_OFF, TERMINATING, UNKNOWN}),
    CRASH_LOOP_BACK_OFF: frozenset({RUNNING, TERMINATING, UNKNOWN}),
    SUCCEEDED: frozenset({TERMINATING, UNKNOWN}),
    FAILED: frozenset({TERMINATING, UNKNOWN}),
    UNKNOWN: frozenset({TERMINATING}),
    TERMINATING: frozenset(),
}


def can_transition(src: str, dst: str) -> bool:
    return dst in TRANSITIONS.get(src, frozenset())


class PodLifecycle:
    """
    Машина состояний pod'а.

    Все изменения идут через registry.update, поэтому каждое
    дискретное изменение фазы = одно событие entity-updated.
    Время (старт, grace period): таймеры на SimulationClock.
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        graph: OwnershipGraph,
        clock: SimulationClock,
        settings: SimSettings,
        on_removed: Optional[Callable[[Optional[ResourceKey]], None]] = None,
    ):
        self.registry = registry
        self.graph = graph
        self.clock = clock
        self.settings = settings
        self.on_removed = on_removed

    # ------------------------------------------------------------------
    # Планирование и старт
    # ------------------------------------------------------------------

    def pick_node(self) -> Optional[str]:
        """Наименее загруженная готовая нода со свободной ёмкостью."""
        best = None
        best_load = 0
        for node in self.registry.list(NODE):
            if not node.ready:
                continue
            load = len(select_pods_by_node(self.registry, node.name))
            if node.capacity is not None and load >= node.capacity:
                continue
            if best is None or load < best_load:
                best, best_load = node, load
        return best.name if best is not None else None

    def admit(self, pod: Pod) -> bool:
        """
        Назначает ноду и запускает таймер старта.
        Нет ёмкости -> pod остаётся Pending с reason=Unschedulable (это не ошибка).
        """
        if pod.phase != PENDING or pod.node is not None:
            return False

        node_name = self.pick_node()
        if node_name is None:
            if pod.reason != "Unschedulable":
                log.warning(f"Pod {pod.name} is unschedulable: no node with free capacity")
                self.registry.update(POD, pod.name, reason="Unschedulable")
            return False

        self.registry.update(POD, pod.name, node=node_name, reason=None)
        self._schedule_startup(pod)
        return True

    def retry_unscheduled(self) -> int:
        admitted = 0
        for pod in self.registry.list(POD):
            if pod.phase == PENDING and pod.node is None:
                if self.admit(pod):
                    admitted += 1
        return admitted

    def _schedule_startup(self, pod: Pod) -> None:
        uid = pod.uid
        self.clock.schedule(
            self.settings.startup_delay,
            lambda: self._on_started(pod.name, uid),
            owner=key_of(pod),
            label=f"start {pod.name}",
        )

    def _on_started(self, name: str, uid: int) -> None:
        pod = self.registry.find(POD, name)
        # устаревший колбэк: pod удалён, пересоздан или уже не Pending
        if pod is None or pod.uid != uid or pod.phase != PENDING:
            return
        self._transition(pod, RUNNING)
        log.info(f"Pod {name} is Running on {pod.node}")

    # ------------------------------------------------------------------
    # Переходы
    # ------------------------------------------------------------------

    def _transition(self, pod: Pod, dst: str, **extra) -> Pod:
        if not can_transition(pod.phase, dst):
            raise InvalidTransitionError(f"Pod {pod.name}: cannot go from {pod.phase} to {dst}")
        return self.registry.update(POD, pod.name, phase=dst, **extra)

    def crash(self, name: str) -> Pod:
        return self._transition(self.registry.get(POD, name), CRASH_LOOP_BACK_OFF)

    def fail(self, name: str) -> Pod:
        return self._transition(self.registry.get(POD, name), FAILED, reason="Error")

    def succeed(self, name: str) -> Pod:
        return self._transition(self.registry.get(POD, name), SUCCEEDED, reason="Completed")

    def fix(self, name: str) -> Pod:
        pod = self.registry.get(POD, name)
        if pod.phase != CRASH_LOOP_BACK_OFF:
            raise InvalidTransitionError(f"Pod {name} is {pod.phase}, only CrashLoopBackOff pods can be fixed")
        return self._transition(pod, RUNNING, restart_count=pod.restart_count + 1)

    def mark_unknown(self, name: str) -> Pod:
        pod = self.registry.get(POD, name)
        return self._transition(pod, UNKNOWN, phase_before_fault=pod.phase)

    def recover(self, name: str) -> Pod:
        pod = self.registry.get(POD, name)
        if pod.phase != UNKNOWN or pod.phase_before_fault is None:
            raise InvalidTransitionError(f"Pod {name} is {pod.phase}, nothing to recover")
        restored = pod.phase_before_fault
        pod = self.registry.update(POD, name, phase=restored, phase_before_fault=None)
        if restored == PENDING:
            # старт мог "сгореть", пока pod был Unknown
            self.clock.cancel_owner(key_of(pod))
            if pod.node is not None:
                self._schedule_startup(pod)
        return pod

    def terminate(self, name: str, release_node: bool = False) -> Pod:
        """Любая фаза, кроме Terminating -> Terminating; удаление после grace period."""
        pod = self.registry.get(POD, name)
        if pod.phase == TERMINATING:
            return pod
        key = key_of(pod)
        self.clock.cancel_owner(key)

        extra = {"phase_before_fault": None}
        if release_node:
            extra["node"] = None
        pod = self._transition(pod, TERMINATING, **extra)

        uid = pod.uid
        self.clock.schedule(
            self.settings.termination_grace,
            lambda: self._on_grace_elapsed(name, uid),
            owner=key,
            label=f"remove {name}",
        )
        return pod

    def _on_grace_elapsed(self, name: str, uid: int) -> None:
        pod = self.registry.find(POD, name)
        if pod is None or pod.uid != uid or pod.phase != TERMINATING:
            return
        self.remove(name)

    def remove(self, name: str) -> None:
        """Окончательное удаление из реестра (не фаза)."""
        pod = self.registry.get(POD, name)
        key = key_of(pod)
        self.clock.cancel_owner(key)
        owner = self.graph.parent(key)
        self.graph.forget(key)
        self.registry.delete(POD, name)
        log.info(f"Pod {name} removed")
        if self.on_removed is not None:
            self.on_removed(owner)
