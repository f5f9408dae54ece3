# kubelab_sim/model/entities.py
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from ..errors import UnknownKindError
from ..types import (
    EntityName, Kind, Uid, ResourceKey,
    NODE, DEPLOYMENT, REPLICA_SET, POD, SERVICE, CONFIG_MAP, SECRET,
    PERSISTENT_VOLUME, PERSISTENT_VOLUME_CLAIM, PENDING,
)

# Объекты ядра хранят только семантику: никаких ссылок на меши/материалы.
# uid проставляет реестр при создании.


@dataclass
class PodTemplate:
    image: str = "nginx"
    labels: Dict[str, str] = field(default_factory=dict)

    def template_hash(self, collision_count: int = 0) -> str:
        """
        Аналог pod-template-hash: стабилен для одинаковых шаблонов,
        collision_count разводит имена, если старое поколение ещё не удалено.
        """
        raw = self.image + "|" + ",".join(f"{k}={v}" for k, v in sorted(self.labels.items()))
        if collision_count:
            raw += f"|{collision_count}"
        return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:10]


@dataclass
class Node:
    name: EntityName
    capacity: Optional[int] = None  # None == без лимита подов
    ready: bool = True
    labels: Dict[str, str] = field(default_factory=dict)
    uid: Uid = Uid(0)
    kind: Kind = field(default=NODE, init=False)


@dataclass
class Deployment:
    name: EntityName
    replicas: int = 1
    selector: Dict[str, str] = field(default_factory=dict)
    template: PodTemplate = field(default_factory=PodTemplate)
    revision: int = 1
    deleting: bool = False
    labels: Dict[str, str] = field(default_factory=dict)
    uid: Uid = Uid(0)
    kind: Kind = field(default=DEPLOYMENT, init=False)


@dataclass
class ReplicaSet:
    name: EntityName
    replicas: int = 1
    owner: Optional[EntityName] = None  # Deployment
    selector: Dict[str, str] = field(default_factory=dict)
    template: PodTemplate = field(default_factory=PodTemplate)
    revision: int = 1
    deleting: bool = False
    labels: Dict[str, str] = field(default_factory=dict)
    uid: Uid = Uid(0)
    kind: Kind = field(default=REPLICA_SET, init=False)


@dataclass
class Pod:
    name: EntityName
    phase: str = PENDING
    owner: Optional[EntityName] = None  # ReplicaSet
    node: Optional[EntityName] = None
    restart_count: int = 0
    image: str = "nginx"
    labels: Dict[str, str] = field(default_factory=dict)

    # ссылки без владения
    config_maps: List[str] = field(default_factory=list)
    secrets: List[str] = field(default_factory=list)
    claims: List[str] = field(default_factory=list)

    reason: Optional[str] = None              # например, Unschedulable
    phase_before_fault: Optional[str] = None  # для восстановления из Unknown
    uid: Uid = Uid(0)
    kind: Kind = field(default=POD, init=False)


@dataclass
class Service:
    name: EntityName
    type: str = "ClusterIP"
    selector: Dict[str, str] = field(default_factory=dict)
    port: int = 80
    labels: Dict[str, str] = field(default_factory=dict)
    uid: Uid = Uid(0)
    kind: Kind = field(default=SERVICE, init=False)


@dataclass
class ConfigMap:
    name: EntityName
    data: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    uid: Uid = Uid(0)
    kind: Kind = field(default=CONFIG_MAP, init=False)


@dataclass
class Secret:
    name: EntityName
    data: Dict[str, str] = field(default_factory=dict)  # непрозрачный payload
    labels: Dict[str, str] = field(default_factory=dict)
    uid: Uid = Uid(0)
    kind: Kind = field(default=SECRET, init=False)


@dataclass
class Volume:
    """
    PV и PVC: одна структура, различаются полем kind.
      - PV:  phase Available | Bound
      - PVC: phase Pending   | Bound
    """
    name: EntityName
    kind: Kind = PERSISTENT_VOLUME
    size: str = "1Gi"
    bound_to: Optional[EntityName] = None
    phase: str = "Available"
    labels: Dict[str, str] = field(default_factory=dict)
    uid: Uid = Uid(0)


ENTITY_TYPES = {
    NODE: Node,
    DEPLOYMENT: Deployment,
    REPLICA_SET: ReplicaSet,
    POD: Pod,
    SERVICE: Service,
    CONFIG_MAP: ConfigMap,
    SECRET: Secret,
}


def build_entity(kind: Kind, name: EntityName, attrs: Dict[str, Any]):
    if kind in (PERSISTENT_VOLUME, PERSISTENT_VOLUME_CLAIM):
        attrs = dict(attrs)
        attrs.setdefault("phase", "Available" if kind == PERSISTENT_VOLUME else PENDING)
        return Volume(name=name, kind=kind, **attrs)
    cls = ENTITY_TYPES.get(kind)
    if cls is None:
        raise UnknownKindError(kind)
    return cls(name=name, **attrs)


def key_of(entity) -> ResourceKey:
    return ResourceKey(entity.kind, entity.name)


def entity_state(entity) -> Dict[str, Any]:
    """Плоский dict для payload'ов событий и API."""
    return asdict(entity)
