# kubelab_sim/types.py
from __future__ import annotations

from dataclasses import dataclass
from typing import NewType


# Имена / идентификаторы
EntityName = NewType("EntityName", str)
Kind = NewType("Kind", str)
Uid = NewType("Uid", int)  # порядковый номер создания в реестре

# Виды объектов
NODE = Kind("Node")
DEPLOYMENT = Kind("Deployment")
REPLICA_SET = Kind("ReplicaSet")
POD = Kind("Pod")
SERVICE = Kind("Service")
CONFIG_MAP = Kind("ConfigMap")
SECRET = Kind("Secret")
PERSISTENT_VOLUME = Kind("PersistentVolume")
PERSISTENT_VOLUME_CLAIM = Kind("PersistentVolumeClaim")

ALL_KINDS = (
    NODE,
    DEPLOYMENT,
    REPLICA_SET,
    POD,
    SERVICE,
    CONFIG_MAP,
    SECRET,
    PERSISTENT_VOLUME,
    PERSISTENT_VOLUME_CLAIM,
)

# Фазы pod'а
PENDING = "Pending"
RUNNING = "Running"
SUCCEEDED = "Succeeded"
FAILED = "Failed"
CRASH_LOOP_BACK_OFF = "CrashLoopBackOff"
TERMINATING = "Terminating"
UNKNOWN = "Unknown"

# Типы сервисов
SERVICE_TYPES = ("ClusterIP", "NodePort", "LoadBalancer")

# Топики шины событий
ENTITY_CREATED = "entity-created"
ENTITY_UPDATED = "entity-updated"
ENTITY_DELETED = "entity-deleted"


@dataclass(frozen=True)
class ResourceKey:
    """
    Составной ключ объекта: (kind, name).
    Имена уникальны только внутри одного kind.
    """
    kind: Kind
    name: EntityName

    def __str__(self) -> str:
        return f"{self.kind}/{self.name}"
