# kubelab_sim/sim/cluster.py
from __future__ import annotations

import copy
import logging
from typing import Any, Callable, List, Optional

from ..config import SimSettings
from ..types import (
    DEPLOYMENT, NODE, REPLICA_SET, SERVICE, ResourceKey,
)
from .clock import SimulationClock
from .events import EventBus, Subscription
from .garbage import GarbageCollector
from .lifecycle import PodLifecycle
from .ownership import OwnershipGraph
from .reconcile import Reconciler
from .registry import ResourceRegistry
from .selector import select_pods_by_owner, select_service_members

log = logging.getLogger(__name__)


class Cluster:
    """
    Одна сессия симуляции: реестр, граф, часы, шина и контроллеры.

    Внешний код (рендер, HUD, API) получает только копии объектов
    и подписку на события; мутации: только через CommandEngine.
    """

    def __init__(self, settings: Optional[SimSettings] = None, bus: Optional[EventBus] = None):
        self.settings = settings or SimSettings()
        self.bus = bus or EventBus(max_depth=self.settings.max_event_depth)
        self.clock = SimulationClock()
        self.registry = ResourceRegistry(self.bus)
        self.graph = OwnershipGraph()
        self.lifecycle = PodLifecycle(self.registry, self.graph, self.clock, self.settings)
        self.gc = GarbageCollector(self.registry, self.graph, self.lifecycle, self.clock)
        self.lifecycle.on_removed = self.gc.collect
        self.reconciler = Reconciler(self.registry, self.graph, self.lifecycle, self.gc, self.settings)

        self._bootstrap_nodes()

    def _bootstrap_nodes(self) -> None:
        with self.bus.batch():
            for i in range(self.settings.initial_nodes):
                self.registry.create(NODE, f"node-{i + 1}", capacity=self.settings.node_capacity)

    # ------------------------------------------------------------------
    # Время
    # ------------------------------------------------------------------

    @property
    def now(self) -> float:
        return self.clock.now

    def tick(self, dt: Optional[float] = None) -> None:
        """Один тик симуляции (тот же, что двигает отрисовку)."""
        dt = self.settings.tick_interval if dt is None else dt
        with self.bus.batch():
            self.clock.advance(dt)
            self.lifecycle.retry_unscheduled()
            self.reconciler.step_rollouts()
            self.reconciler.reconcile()

    def reconcile(self) -> None:
        self.reconciler.reconcile()

    # ------------------------------------------------------------------
    # Чтение (только копии)
    # ------------------------------------------------------------------

    def get(self, kind: str, name: str) -> Any:
        return copy.deepcopy(self.registry.get(kind, name))

    def find(self, kind: str, name: str) -> Optional[Any]:
        entity = self.registry.find(kind, name)
        return copy.deepcopy(entity) if entity is not None else None

    def list(self, kind: str) -> List[Any]:
        return [copy.deepcopy(e) for e in self.registry.list(kind)]

    def endpoints(self, service_name: str) -> List[Any]:
        service = self.registry.get(SERVICE, service_name)
        return [copy.deepcopy(p) for p in select_service_members(self.registry, service)]

    def owned_pods(self, kind: str, name: str, active_only: bool = False) -> List[Any]:
        """Pod'ы ReplicaSet'а или (транзитивно) Deployment'а."""
        self.registry.get(kind, name)
        if kind == REPLICA_SET:
            rs_names = [name]
        elif kind == DEPLOYMENT:
            rs_names = [c.name for c in self.graph.children(ResourceKey(DEPLOYMENT, name)) if c.kind == REPLICA_SET]
        else:
            raise ValueError(f"{kind} does not own pods")

        pods = []
        for rs_name in rs_names:
            pods.extend(select_pods_by_owner(self.registry, self.graph, rs_name, active_only=active_only))
        pods.sort(key=lambda p: p.uid)
        return [copy.deepcopy(p) for p in pods]

    def replica_sets_of(self, deployment: str) -> List[Any]:
        """Активные поколения деплоймента (не больше двух)."""
        dep = self.registry.get(DEPLOYMENT, deployment)
        return [copy.deepcopy(rs) for rs in self.reconciler.generations(dep)]

    # ------------------------------------------------------------------
    # События
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, listener: Callable[[Any], None]) -> Subscription:
        return self.bus.subscribe(topic, listener)

    def unsubscribe(self, handle: Subscription) -> None:
        self.bus.unsubscribe(handle)
