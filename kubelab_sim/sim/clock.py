# kubelab_sim/sim/clock.py
from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from ..types import ResourceKey

log = logging.getLogger(__name__)


@dataclass(order=True)
class Timer:
    due: float
    seq: int
    callback: Callable[[], None] = field(compare=False)
    owner: Optional[ResourceKey] = field(default=None, compare=False)
    label: str = field(default="", compare=False)
    cancelled: bool = field(default=False, compare=False)


class SimulationClock:
    """
    Единые монотонные симуляционные часы.

    Вместо setTimeout: отложенные колбэки, привязанные к объекту (owner).
    Удаление объекта -> cancel_owner(key), висячих колбэков не остаётся.
    """

    def __init__(self) -> None:
        self.now: float = 0.0
        self._queue: List[Timer] = []
        self._seq = 0
        self._by_owner: Dict[ResourceKey, Set[int]] = {}
        self._timers: Dict[int, Timer] = {}

    def schedule(
        self,
        delay: float,
        callback: Callable[[], None],
        owner: Optional[ResourceKey] = None,
        label: str = "",
    ) -> Timer:
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        self._seq += 1
        timer = Timer(due=self.now + delay, seq=self._seq, callback=callback, owner=owner, label=label)
        heapq.heappush(self._queue, timer)
        self._timers[timer.seq] = timer
        if owner is not None:
            self._by_owner.setdefault(owner, set()).add(timer.seq)
        return timer

    def cancel(self, timer: Timer) -> None:
        if timer.cancelled:
            return
        timer.cancelled = True
        self._forget(timer)

    def cancel_owner(self, owner: ResourceKey) -> int:
        """Отменяет все таймеры объекта, возвращает их количество."""
        seqs = self._by_owner.pop(owner, set())
        for seq in seqs:
            timer = self._timers.pop(seq, None)
            if timer is not None:
                timer.cancelled = True
        return len(seqs)

    def pending(self, owner: Optional[ResourceKey] = None) -> List[Timer]:
        timers = [t for t in self._timers.values() if not t.cancelled]
        if owner is not None:
            timers = [t for t in timers if t.owner == owner]
        return sorted(timers)

    def advance(self, dt: float) -> int:
        """
        Сдвигает часы на dt и вызывает созревшие колбэки в порядке (due, seq).
        Колбэки, запланированные внутри advance и созревшие до конца интервала,
        тоже срабатывают. Возвращает число сработавших таймеров.
        """
        if dt < 0:
            raise ValueError(f"dt must be >= 0, got {dt}")
        target = self.now + dt
        fired = 0
        while self._queue and self._queue[0].due <= target:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self.now = max(self.now, timer.due)
            self._forget(timer)
            log.debug(f"Timer fired at t={self.now:.2f}: {timer.label or timer.seq}")
            timer.callback()
            fired += 1
        self.now = target
        return fired

    def _forget(self, timer: Timer) -> None:
        self._timers.pop(timer.seq, None)
        if timer.owner is not None:
            seqs = self._by_owner.get(timer.owner)
            if seqs is not None:
                seqs.discard(timer.seq)
                if not seqs:
                    self._by_owner.pop(timer.owner, None)
