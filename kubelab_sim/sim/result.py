# kubelab_sim/sim/result.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class Command:
    """
    Структурная команда: глагол + kind/name + параметры.
    Пример: scale deployment web-app replicas=5
    """
    verb: str
    kind: Optional[str] = None
    name: Optional[str] = None
    params: Dict[str, str] = field(default_factory=dict)
    args: List[str] = field(default_factory=list)  # лишние позиционные (scale deploy x 5)

    def __str__(self) -> str:
        parts = [self.verb]
        if self.kind:
            parts.append(self.kind)
        if self.name:
            parts.append(self.name)
        parts.extend(self.args)
        parts.extend(f"{k}={v}" for k, v in self.params.items())
        return " ".join(parts)


@dataclass
class CommandResult:
    """То, что уходит в терминал: {ok, message}."""
    ok: bool
    message: str

    def to_dict(self) -> Dict[str, object]:
        return {"ok": self.ok, "message": self.message}
