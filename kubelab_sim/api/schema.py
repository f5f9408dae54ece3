# kubelab_sim/api/schema.py
from __future__ import annotations

from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field


class CommandRequest(BaseModel):
    """
    Либо строка терминала (command), либо структурная команда
    (verb + kind + name + params).
    """
    command: Optional[str] = None
    verb: Optional[str] = None
    kind: Optional[str] = None
    name: Optional[str] = None
    params: Dict[str, str] = Field(default_factory=dict)


class CommandResponse(BaseModel):
    ok: bool
    message: str


class ResourceModel(BaseModel):
    kind: str
    name: str
    uid: int
    state: Dict[str, Any]


class EndpointsResponse(BaseModel):
    service: str
    selector: Dict[str, str]
    pods: List[str]


class TickRequest(BaseModel):
    dt: Optional[float] = Field(default=None, gt=0)


class ClockResponse(BaseModel):
    now: float


class EventEntry(BaseModel):
    timestamp: float  # время симуляции
    kind: str
    name: str
    change_type: str
    new_state: Optional[Dict[str, Any]] = None


# --- Упражнения ---

class ExerciseModel(BaseModel):
    id: str
    level: int
    title: str
    prompt: str
    starter: str
    hints_count: int
    base_reward: int


class ExerciseStateResponse(BaseModel):
    exercise: ExerciseModel
    hints_used: int
    remaining_hints: int
    reward: int


class HintResponse(BaseModel):
    hint: Optional[str]
    hints_used: int
    remaining_hints: int
    reward: int


class SubmitRequest(BaseModel):
    text: str


class SubmitResponse(BaseModel):
    valid: bool
    errors: List[str]
    reward: int
    explanation: Optional[str] = None
