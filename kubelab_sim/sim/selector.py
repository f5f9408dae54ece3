# kubelab_sim/sim/selector.py
from __future__ import annotations

from typing import Dict, List

from ..model.entities import Pod, Service
from ..types import POD, REPLICA_SET, ResourceKey, TERMINATING, SUCCEEDED, FAILED
from .ownership import OwnershipGraph
from .registry import ResourceRegistry

# Фазы, в которых pod уже не считается "живой" репликой
INACTIVE_PHASES = (TERMINATING, SUCCEEDED, FAILED)


def labels_match(selector: Dict[str, str], labels: Dict[str, str]) -> bool:
    """
    matchLabels: все пары селектора есть в labels.
    Пустой селектор не выбирает ничего (как Service без selector).
    """
    if not selector:
        return False
    for k, v in selector.items():
        if labels.get(k) != v:
            return False
    return True


def select_pods_by_labels(
    registry: ResourceRegistry,
    selector: Dict[str, str],
    include_terminating: bool = False,
) -> List[Pod]:
    result: List[Pod] = []
    for p in registry.list(POD):
        if not include_terminating and p.phase == TERMINATING:
            continue
        if labels_match(selector, p.labels):
            result.append(p)
    return result


def select_service_members(registry: ResourceRegistry, service: Service) -> List[Pod]:
    """Endpoints сервиса: пересчитываются на каждый запрос."""
    return select_pods_by_labels(registry, service.selector)


def select_pods_by_owner(
    registry: ResourceRegistry,
    graph: OwnershipGraph,
    rs_name: str,
    active_only: bool = False,
) -> List[Pod]:
    """Pod'ы ReplicaSet'а в порядке создания (по рёбрам графа, не по именам)."""
    result: List[Pod] = []
    for child in graph.children(ResourceKey(REPLICA_SET, rs_name)):
        if child.kind != POD:
            continue
        p = registry.find(POD, child.name)
        if p is None:
            continue
        if active_only and p.phase in INACTIVE_PHASES:
            continue
        result.append(p)
    result.sort(key=lambda p: p.uid)
    return result


def select_pods_by_node(
    registry: ResourceRegistry,
    node_name: str,
    include_terminating: bool = True,
) -> List[Pod]:
    result: List[Pod] = []
    for p in registry.list(POD):
        if p.node != node_name:
            continue
        if not include_terminating and p.phase == TERMINATING:
            continue
        result.append(p)
    return result
