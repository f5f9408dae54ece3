# kubelab_sim/api/server.py
from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from typing import Any, Deque, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from ..config import SimSettings
from ..errors import CommandSyntaxError, NotFoundError
from ..exercises.catalog import Exercise
from ..exercises.runner import ExerciseRunner
from ..model.entities import entity_state
from ..sim.cluster import Cluster
from ..sim.commands import CommandEngine
from ..sim.events import ChangeEvent
from ..sim.parser import normalize_kind
from ..sim.result import Command
from ..types import SERVICE, ENTITY_CREATED, ENTITY_UPDATED, ENTITY_DELETED
from .schema import (
    CommandRequest, CommandResponse, ResourceModel, EndpointsResponse,
    TickRequest, ClockResponse, EventEntry,
    ExerciseModel, ExerciseStateResponse, HintResponse, SubmitRequest, SubmitResponse,
)

app = FastAPI(title="kubelab-sim")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

log = logging.getLogger("uvicorn")

EVENT_LOG_SIZE = 500


# --- Session ---

class SimSession:
    """
    Кластер + движок команд + упражнения одной сессии.
    Эндпоинты и фоновый тик работают под одним lock'ом.
    """

    def __init__(self, settings: Optional[SimSettings] = None):
        self.settings = settings or SimSettings()
        self.lock = threading.RLock()
        self.events: Deque[EventEntry] = deque(maxlen=EVENT_LOG_SIZE)
        self.runner = ExerciseRunner()
        self._build()

    def _build(self) -> None:
        self.cluster = Cluster(self.settings)
        self.engine = CommandEngine(self.cluster)
        for topic in (ENTITY_CREATED, ENTITY_UPDATED, ENTITY_DELETED):
            self.cluster.subscribe(topic, self._record)

    def _record(self, event: ChangeEvent) -> None:
        self.events.append(EventEntry(
            timestamp=self.cluster.now,
            kind=event.kind,
            name=event.name,
            change_type=event.change_type,
            new_state=event.new_state,
        ))

    def reset(self) -> None:
        with self.lock:
            self.events.clear()
            self.runner.reset()
            self._build()
        log.info("Simulation reset")

    def tick(self, dt: Optional[float] = None) -> float:
        with self.lock:
            self.cluster.tick(dt)
            return self.cluster.now


session = SimSession()
_tick_task: Optional[asyncio.Task] = None


async def _tick_loop() -> None:
    while True:
        await asyncio.sleep(session.settings.tick_interval)
        try:
            # lock берётся в пуле потоков, event loop не блокируется
            await run_in_threadpool(session.tick)
        except Exception:
            log.exception("Auto tick failed")


@app.on_event("startup")
async def startup_event() -> None:
    global _tick_task
    if session.settings.auto_tick:
        _tick_task = asyncio.create_task(_tick_loop())
        log.info(f"Auto tick every {session.settings.tick_interval}s")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    if _tick_task is not None:
        _tick_task.cancel()


# --- Helpers ---

def _kind_or_404(raw: str) -> str:
    try:
        return normalize_kind(raw)
    except CommandSyntaxError as e:
        raise HTTPException(status_code=404, detail=str(e))


def _resource_model(entity: Any) -> ResourceModel:
    return ResourceModel(kind=entity.kind, name=entity.name, uid=entity.uid, state=entity_state(entity))


def _exercise_model(ex: Exercise) -> ExerciseModel:
    return ExerciseModel(
        id=ex.id,
        level=ex.level,
        title=ex.title,
        prompt=ex.prompt,
        starter=ex.starter,
        hints_count=len(ex.hints),
        base_reward=ex.base_reward,
    )


def _current_exercise_or_409() -> Exercise:
    ex = session.runner.current
    if ex is None:
        raise HTTPException(status_code=409, detail="No exercise loaded")
    return ex


# --- Cluster endpoints ---

@app.post("/commands", response_model=CommandResponse)
def run_command(req: CommandRequest) -> CommandResponse:
    with session.lock:
        if req.command is not None:
            result = session.engine.run(req.command)
        elif req.verb:
            kind = None
            if req.kind:
                try:
                    kind = normalize_kind(req.kind)
                except CommandSyntaxError as e:
                    return CommandResponse(ok=False, message=f"error: {e}")
            cmd = Command(verb=req.verb, kind=kind, name=req.name, params=dict(req.params))
            result = session.engine.execute(cmd)
        else:
            raise HTTPException(status_code=422, detail="Either command or verb is required")
    return CommandResponse(ok=result.ok, message=result.message)


@app.get("/resources/{kind}", response_model=List[ResourceModel])
def list_resources(kind: str):
    k = _kind_or_404(kind)
    with session.lock:
        return [_resource_model(e) for e in session.cluster.list(k)]


@app.get("/resources/{kind}/{name}", response_model=ResourceModel)
def get_resource(kind: str, name: str) -> ResourceModel:
    k = _kind_or_404(kind)
    with session.lock:
        try:
            return _resource_model(session.cluster.get(k, name))
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))


@app.get("/services/{name}/endpoints", response_model=EndpointsResponse)
def service_endpoints(name: str) -> EndpointsResponse:
    with session.lock:
        try:
            svc = session.cluster.get(SERVICE, name)
            pods = session.cluster.endpoints(name)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
    return EndpointsResponse(service=name, selector=svc.selector, pods=[p.name for p in pods])


@app.post("/tick", response_model=ClockResponse)
def tick(req: Optional[TickRequest] = None) -> ClockResponse:
    dt = req.dt if req is not None else None
    return ClockResponse(now=session.tick(dt))


@app.get("/events", response_model=List[EventEntry])
def list_events(limit: int = 100):
    with session.lock:
        events = list(session.events)
    # новые сверху
    events.reverse()
    return events[:max(0, limit)]


@app.post("/reset")
def reset() -> dict:
    session.reset()
    return {"status": "ok", "now": session.cluster.now}


# --- Exercise endpoints ---

@app.get("/exercises", response_model=List[ExerciseModel])
def list_exercises():
    return [_exercise_model(ex) for ex in session.runner.exercises()]


def _exercise_state() -> ExerciseStateResponse:
    runner = session.runner
    ex = _current_exercise_or_409()
    return ExerciseStateResponse(
        exercise=_exercise_model(ex),
        hints_used=runner.hints_used,
        remaining_hints=runner.remaining_hints,
        reward=runner.reward_for(),
    )


@app.post("/exercises/{exercise_id}/load", response_model=ExerciseStateResponse)
def load_exercise(exercise_id: str) -> ExerciseStateResponse:
    with session.lock:
        if session.runner.load_exercise(exercise_id) is None:
            raise HTTPException(status_code=404, detail=f"Exercise {exercise_id} not found")
        return _exercise_state()


@app.post("/exercises/hint", response_model=HintResponse)
def next_hint() -> HintResponse:
    with session.lock:
        _current_exercise_or_409()
        runner = session.runner
        hint = runner.next_hint()
        return HintResponse(
            hint=hint,
            hints_used=runner.hints_used,
            remaining_hints=runner.remaining_hints,
            reward=runner.reward_for(),
        )


@app.post("/exercises/submit", response_model=SubmitResponse)
def submit_exercise(req: SubmitRequest) -> SubmitResponse:
    with session.lock:
        ex = _current_exercise_or_409()
        result = session.runner.submit(req.text)
    return SubmitResponse(
        valid=result.valid,
        errors=result.errors,
        reward=result.reward,
        explanation=ex.explanation if result.valid else None,
    )
