# kubelab_sim/sim/events.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from ..errors import EventStormError

log = logging.getLogger(__name__)

Listener = Callable[[Any], None]


@dataclass(frozen=True)
class ChangeEvent:
    """Payload событий entity-created / entity-updated / entity-deleted."""
    kind: str
    name: str
    change_type: str
    new_state: Optional[Dict[str, Any]]  # None для удаления


@dataclass(frozen=True)
class Subscription:
    topic: str
    listener: Listener
    seq: int


class EventBus:
    """
    Синхронный pub/sub.

    - доставка в том же потоке, в порядке подписки;
    - исключение слушателя логируется и не мешает остальным;
    - истории нет, поздние подписчики ничего не получают;
    - вложенный publish из слушателя разрешён, но глубина ограничена max_depth.
    """

    def __init__(self, max_depth: int = 8):
        self.max_depth = max_depth
        self._subs: Dict[str, List[Subscription]] = {}
        self._seq = 0
        self._depth = 0
        self._pending: Optional[List[Tuple[str, Any]]] = None
        self.storms: List[str] = []

    def subscribe(self, topic: str, listener: Listener) -> Subscription:
        self._seq += 1
        sub = Subscription(topic=topic, listener=listener, seq=self._seq)
        self._subs.setdefault(topic, []).append(sub)
        return sub

    def unsubscribe(self, handle: Subscription) -> None:
        subs = self._subs.get(handle.topic)
        if subs and handle in subs:
            subs.remove(handle)

    def publish(self, topic: str, payload: Any = None) -> None:
        if self._pending is not None:
            self._pending.append((topic, payload))
            return

        if self._depth >= self.max_depth:
            raise EventStormError(
                f"Event depth limit {self.max_depth} exceeded while publishing {topic}"
            )

        # копия: слушатель может (от)писаться во время доставки
        subs = list(self._subs.get(topic, []))
        self._depth += 1
        try:
            for sub in subs:
                try:
                    sub.listener(payload)
                except EventStormError:
                    raise
                except Exception:
                    log.exception(f"Listener failed for topic {topic}")
        finally:
            self._depth -= 1

    @contextmanager
    def batch(self) -> Iterator[None]:
        """
        Откладывает публикацию до конца операции.
        Если операция упала: накопленные события выбрасываются.
        Вложенный batch сливается с внешним.

        Шторм из слушателя при доставке обрывает только цепочку
        этого события; остальные накопленные события доставляются,
        а сообщения о штормах остаются в self.storms до следующего batch.
        """
        if self._pending is not None:
            yield
            return

        self._pending = []
        self.storms = []
        try:
            yield
        except BaseException:
            self._pending = None
            raise
        pending, self._pending = self._pending, None
        for topic, payload in pending:
            try:
                self.publish(topic, payload)
            except EventStormError as e:
                log.error(f"Event storm cut while delivering {topic}: {e}")
                self.storms.append(str(e))

    def listener_count(self, topic: str) -> int:
        return len(self._subs.get(topic, []))
