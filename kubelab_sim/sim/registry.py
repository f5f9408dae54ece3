# kubelab_sim/sim/registry.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..errors import AlreadyExistsError, NotFoundError, UnknownKindError
from ..model.entities import build_entity, entity_state
from ..types import (
    ALL_KINDS, EntityName, Kind, Uid,
    ENTITY_CREATED, ENTITY_UPDATED, ENTITY_DELETED,
)
from .events import ChangeEvent, EventBus

log = logging.getLogger(__name__)


class ResourceRegistry:
    """
    Хранилище всех объектов кластера, ключ: (kind, name).

    Каждая успешная мутация публикует ровно одно событие,
    и только после того, как изменение применено.
    """

    def __init__(self, bus: EventBus):
        self.bus = bus
        self._items: Dict[Kind, Dict[EntityName, Any]] = {k: {} for k in ALL_KINDS}
        self._seq = 0

    def _bucket(self, kind: str) -> Dict[EntityName, Any]:
        bucket = self._items.get(Kind(kind))
        if bucket is None:
            raise UnknownKindError(kind)
        return bucket

    # --- чтение ---

    def find(self, kind: str, name: str) -> Optional[Any]:
        return self._bucket(kind).get(EntityName(name))

    def get(self, kind: str, name: str) -> Any:
        entity = self.find(kind, name)
        if entity is None:
            raise NotFoundError(kind, name)
        return entity

    def exists(self, kind: str, name: str) -> bool:
        return self.find(kind, name) is not None

    def list(self, kind: str) -> List[Any]:
        """Объекты kind'а в порядке создания."""
        return list(self._bucket(kind).values())

    # --- мутации ---

    def create(self, kind: str, name: str, **attrs) -> Any:
        bucket = self._bucket(kind)
        if EntityName(name) in bucket:
            raise AlreadyExistsError(kind, name)

        entity = build_entity(Kind(kind), EntityName(name), attrs)
        self._seq += 1
        entity.uid = Uid(self._seq)
        bucket[entity.name] = entity

        log.debug(f"Created {kind}/{name} uid={entity.uid}")
        self.bus.publish(ENTITY_CREATED, ChangeEvent(kind, name, ENTITY_CREATED, entity_state(entity)))
        return entity

    def update(self, kind: str, name: str, **changes) -> Any:
        """Меняет атрибуты; событие только если что-то реально изменилось."""
        entity = self.get(kind, name)
        changed = False
        for attr, value in changes.items():
            if not hasattr(entity, attr):
                raise AttributeError(f"{kind} has no attribute {attr}")
            if getattr(entity, attr) != value:
                setattr(entity, attr, value)
                changed = True

        if changed:
            self.bus.publish(ENTITY_UPDATED, ChangeEvent(kind, name, ENTITY_UPDATED, entity_state(entity)))
        return entity

    def delete(self, kind: str, name: str) -> Any:
        bucket = self._bucket(kind)
        entity = bucket.pop(EntityName(name), None)
        if entity is None:
            raise NotFoundError(kind, name)

        log.debug(f"Deleted {kind}/{name}")
        self.bus.publish(ENTITY_DELETED, ChangeEvent(kind, name, ENTITY_DELETED, None))
        return entity
