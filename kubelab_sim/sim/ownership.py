# kubelab_sim/sim/ownership.py
from __future__ import annotations

from typing import Dict, List, Optional

from ..types import ResourceKey


class OwnershipGraph:
    """
    Явная смежность parent -> children (Deployment -> ReplicaSet -> Pod)
    и связи PV <-> PVC.

    Членство pod'ов в Service сюда не входит: оно вычисляется по селектору
    (см. selector.select_service_members), т.к. меняется без мутации сервиса.
    """

    def __init__(self) -> None:
        self._children: Dict[ResourceKey, List[ResourceKey]] = {}
        self._parent: Dict[ResourceKey, ResourceKey] = {}
        self._bindings: Dict[ResourceKey, ResourceKey] = {}

    # --- владение ---

    def attach(self, parent: ResourceKey, child: ResourceKey) -> None:
        current = self._parent.get(child)
        if current is not None and current != parent:
            raise ValueError(f"{child} is already owned by {current}")
        if current == parent:
            return
        self._parent[child] = parent
        self._children.setdefault(parent, []).append(child)

    def detach(self, parent: ResourceKey, child: ResourceKey) -> None:
        if self._parent.get(child) != parent:
            return
        del self._parent[child]
        siblings = self._children.get(parent, [])
        if child in siblings:
            siblings.remove(child)
        if not siblings:
            self._children.pop(parent, None)

    def parent(self, key: ResourceKey) -> Optional[ResourceKey]:
        return self._parent.get(key)

    def children(self, key: ResourceKey) -> List[ResourceKey]:
        """Дети в порядке присоединения."""
        return list(self._children.get(key, []))

    def has_children(self, key: ResourceKey) -> bool:
        return bool(self._children.get(key))

    def cascade_order(self, key: ResourceKey) -> List[ResourceKey]:
        """
        Обход в глубину, post-order: листья раньше владельцев,
        сам key: последним.
        """
        order: List[ResourceKey] = []

        def walk(node: ResourceKey) -> None:
            for child in self.children(node):
                walk(child)
            order.append(node)

        walk(key)
        return order

    # --- PV <-> PVC ---

    def bind(self, volume: ResourceKey, claim: ResourceKey) -> None:
        for side in (volume, claim):
            peer = self._bindings.get(side)
            if peer is not None:
                raise ValueError(f"{side} is already bound to {peer}")
        self._bindings[volume] = claim
        self._bindings[claim] = volume

    def unbind(self, key: ResourceKey) -> Optional[ResourceKey]:
        peer = self._bindings.pop(key, None)
        if peer is not None:
            self._bindings.pop(peer, None)
        return peer

    def bound_peer(self, key: ResourceKey) -> Optional[ResourceKey]:
        return self._bindings.get(key)

    # --- уборка ---

    def forget(self, key: ResourceKey) -> None:
        """Вызывается при удалении объекта из реестра."""
        parent = self._parent.get(key)
        if parent is not None:
            self.detach(parent, key)
        for child in self._children.pop(key, []):
            self._parent.pop(child, None)
        self.unbind(key)
