# webhook.py
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from . import settings
from .errors import CIError, MalformedEvent
from .model import EventKind, PipelineDefinition
from .runner import PipelineRun
from .secret_store import SecretStore
from .toolchain import ToolchainPool
from .trigger import event_from_dict
from .ui.console import get_console

# -------------------- Schemas --------------------

class EventPayload(BaseModel):
    kind: str
    branch: str | None = None
    ref: str | None = None
    commit: str | None = None
    sha: str | None = None
    repository: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class RunResponse(BaseModel):
    run_id: str
    status: str  # queued|running|succeeded|failed|cancelled|skipped|error
    reason: str = ""
    params: dict[str, str] = Field(default_factory=dict)
    jobs: list[str] = Field(default_factory=list)
    verdict: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime


# -------------------- Run registry --------------------

def now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunRecord:
    run_id: str
    run: PipelineRun
    status: str = "queued"
    error: str | None = None
    created_at: datetime = field(default_factory=now_utc)
    done: threading.Event = field(default_factory=threading.Event)

    @property
    def key(self) -> tuple[str | None, str | None] | None:
        # push / PR runs for the same branch supersede each other
        if self.run.event.kind not in (EventKind.PUSH, EventKind.PULL_REQUEST):
            return None
        return self.run.event.repository, self.run.event.branch

    def to_response(self) -> RunResponse:
        decision = self.run.decision
        verdict = self.run.verdict
        return RunResponse(
            run_id=self.run_id,
            status=self.status,
            reason=decision.reason if decision else "",
            params=decision.params if decision else {},
            jobs=[r.job for r in verdict.results] if verdict else [],
            verdict=verdict.to_dict() if verdict else None,
            error=self.error,
            created_at=self.created_at,
        )


class RunRegistry:
    """
    In-memory run records, oldest first.

    Once more than max_runs are held, the oldest finished runs are dropped;
    runs still in flight are never evicted.
    """

    def __init__(self, max_runs: int | None = None) -> None:
        self._lock = threading.Lock()
        self._runs: Dict[str, RunRecord] = {}
        self.max_runs = settings.RUN_HISTORY if max_runs is None else max_runs

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)

    def get(self, run_id: str) -> RunRecord:
        with self._lock:
            rec = self._runs.get(run_id)
        if rec is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return rec

    def add(self, rec: RunRecord, *, cancel_superseded: bool) -> None:
        with self._lock:
            if cancel_superseded and rec.key is not None:
                for other in self._runs.values():
                    if other.key == rec.key and not other.done.is_set():
                        other.run.cancel()
            self._runs[rec.run_id] = rec
            self._prune(keep=rec.run_id)

    def _prune(self, keep: str) -> None:
        excess = len(self._runs) - self.max_runs
        if excess <= 0:
            return
        finished = [run_id for run_id, r in self._runs.items() if r.done.is_set() and run_id != keep]
        for run_id in finished[:excess]:
            del self._runs[run_id]


def _execute(rec: RunRecord) -> None:
    rec.status = "running"
    try:
        verdict = rec.run.run()
        if verdict is None:
            rec.status = "skipped"
        elif verdict.succeeded:
            rec.status = "succeeded"
        elif rec.run.cancelled:
            rec.status = "cancelled"
        else:
            rec.status = "failed"
    except CIError as e:
        rec.status = "error"
        rec.error = str(e)
    except Exception as e:
        get_console().print_exception(e)
        rec.status = "error"
        rec.error = f"{type(e).__name__}: {e}"
    finally:
        rec.done.set()


# -------------------- App --------------------

def create_app(
    definition: PipelineDefinition,
    *,
    repo_root: str | Path = ".",
    toolchains: Optional[ToolchainPool] = None,
    secrets: Optional[SecretStore] = None,
    max_workers: int | None = None,
    cancel_superseded: bool | None = None,
    max_runs: int | None = None,
) -> FastAPI:
    """
    HTTP receiver for hosting-platform events.

    The definition is loaded once by the caller and shared read-only by
    every run.
    """
    app = FastAPI(title="crossci event receiver")
    registry = RunRegistry(max_runs)
    supersede = settings.CANCEL_SUPERSEDED if cancel_superseded is None else cancel_superseded

    @app.post("/events", response_model=RunResponse)
    def receive_event(payload: EventPayload, wait: bool = False):
        data = payload.model_dump(exclude_none=True)
        data.update(data.pop("extra", {}) or {})
        try:
            event = event_from_dict(data)
        except MalformedEvent as e:
            raise HTTPException(status_code=422, detail=str(e))

        run = PipelineRun(
            definition,
            event,
            repo_root=repo_root,
            toolchains=toolchains,
            secrets=secrets,
            max_workers=max_workers,
        )
        try:
            decision = run.decide()
        except MalformedEvent as e:
            raise HTTPException(status_code=422, detail=str(e))

        rec = RunRecord(run_id=str(uuid.uuid4()), run=run)
        if not decision.run:
            rec.status = "skipped"
            rec.done.set()
            registry.add(rec, cancel_superseded=False)
            return rec.to_response()

        registry.add(rec, cancel_superseded=supersede)
        if wait:
            _execute(rec)
        else:
            threading.Thread(target=_execute, args=(rec,), name=f"run-{rec.run_id}", daemon=True).start()
        return rec.to_response()

    @app.get("/runs/{run_id}", response_model=RunResponse)
    def get_run(run_id: str):
        return registry.get(run_id).to_response()

    @app.post("/runs/{run_id}/cancel", response_model=RunResponse)
    def cancel_run(run_id: str):
        rec = registry.get(run_id)
        if rec.done.is_set():
            raise HTTPException(status_code=409, detail=f"Run already {rec.status}")
        rec.run.cancel()
        return rec.to_response()

    return app
