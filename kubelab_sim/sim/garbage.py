# kubelab_sim/sim/garbage.py
from __future__ import annotations

import logging
from typing import List, Optional

from ..types import (
    DEPLOYMENT, REPLICA_SET, POD, NODE,
    PERSISTENT_VOLUME, PERSISTENT_VOLUME_CLAIM, PENDING, TERMINATING,
    ResourceKey,
)
from .clock import SimulationClock
from .lifecycle import PodLifecycle
from .ownership import OwnershipGraph
from .registry import ResourceRegistry
from .selector import select_pods_by_node

log = logging.getLogger(__name__)

CONTROLLER_KINDS = (DEPLOYMENT, REPLICA_SET)


class GarbageCollector:
    """
    Каскадное удаление в режиме foreground:
      - pod'ы поддерева переходят в Terminating и уходят после grace period;
      - контроллеры (Deployment/ReplicaSet) помечаются deleting и удаляются
        из реестра, как только у них не осталось детей.
    Итог: одно событие entity-deleted на объект, ребёнок всегда раньше владельца.
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        graph: OwnershipGraph,
        lifecycle: PodLifecycle,
        clock: SimulationClock,
    ):
        self.registry = registry
        self.graph = graph
        self.lifecycle = lifecycle
        self.clock = clock

    def delete(self, key: ResourceKey) -> List[ResourceKey]:
        """Возвращает ключи, затронутые каскадом (в порядке обхода)."""
        self.registry.get(key.kind, key.name)

        if key.kind == POD:
            self.lifecycle.terminate(key.name)
            return [key]
        if key.kind in CONTROLLER_KINDS:
            return self._delete_controller(key)
        if key.kind == NODE:
            self._delete_node(key)
            return [key]
        if key.kind in (PERSISTENT_VOLUME, PERSISTENT_VOLUME_CLAIM):
            self._release_binding(key)

        self._remove(key)
        return [key]

    def _delete_controller(self, key: ResourceKey) -> List[ResourceKey]:
        order = self.graph.cascade_order(key)
        for k in order:
            if k.kind == POD:
                pod = self.registry.find(POD, k.name)
                if pod is not None and pod.phase != TERMINATING:
                    self.lifecycle.terminate(k.name)
            elif k.kind in CONTROLLER_KINDS:
                self.registry.update(k.kind, k.name, deleting=True)

        # контроллеры без детей можно убрать сразу
        for k in order:
            if k.kind in CONTROLLER_KINDS:
                self.collect(k)
        return order

    def _delete_node(self, key: ResourceKey) -> None:
        for pod in select_pods_by_node(self.registry, key.name, include_terminating=False):
            self.lifecycle.terminate(pod.name, release_node=True)
        self._remove(key)

    def _release_binding(self, key: ResourceKey) -> None:
        peer = self.graph.unbind(key)
        if peer is None:
            return
        # PV освобождается, PVC снова ждёт тома
        phase = "Available" if peer.kind == PERSISTENT_VOLUME else PENDING
        self.registry.update(peer.kind, peer.name, bound_to=None, phase=phase)

    def collect(self, key: Optional[ResourceKey]) -> None:
        """Удаляет помеченный контроллер без детей и поднимается к владельцу."""
        while key is not None:
            entity = self.registry.find(key.kind, key.name)
            if entity is None or not getattr(entity, "deleting", False):
                return
            if self.graph.has_children(key):
                return
            parent = self.graph.parent(key)
            self._remove(key)
            key = parent

    def _remove(self, key: ResourceKey) -> None:
        self.clock.cancel_owner(key)
        self.graph.forget(key)
        self.registry.delete(key.kind, key.name)
        log.info(f"{key} deleted")


def deletion_in_progress(entity) -> bool:
    if entity.kind == POD:
        return entity.phase == TERMINATING
    return bool(getattr(entity, "deleting", False))
