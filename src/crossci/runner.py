# runner.py
from __future__ import annotations

import threading
from functools import partial
from pathlib import Path
from typing import List, Optional

from . import settings
from .executor import execute
from .graph import dispatch_all
from .matrix import expand_all
from .model import EventDescriptor, JobInstance, PipelineDefinition, PipelineVerdict, RunDecision
from .secret_store import EnvSecretStore, SecretStore
from .toolchain import RustupProvider, ToolchainPool
from .trigger import evaluate
from .ui.console import Console, get_console

# event ---> trigger ---> matrix ---> graph ---> executor(s) ---> verdict


class PipelineRun:
    """
    One run of a pipeline for one event.

    ``decide()`` and ``instances()`` are pure; ``run()`` dispatches and
    blocks until every instance is terminal. ``cancel()`` may be called from
    any thread: in-flight steps are terminated and their instances finish
    as skipped.
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        event: EventDescriptor,
        *,
        repo_root: str | Path = ".",
        toolchains: Optional[ToolchainPool] = None,
        secrets: Optional[SecretStore] = None,
        max_workers: int | None = None,
        step_timeout: float | None = None,
        console: Optional[Console] = None,
    ):
        self.definition = definition
        self.event = event
        self.repo_root = Path(repo_root)
        self.toolchains = toolchains or ToolchainPool(RustupProvider(settings.RUSTUP))
        self.secrets = secrets or EnvSecretStore(settings.SECRET_PREFIX)
        self.max_workers = max_workers if max_workers is not None else settings.MAX_WORKERS
        self.step_timeout = step_timeout or settings.STEP_TIMEOUT
        self.console = console or get_console()
        self._cancel = threading.Event()
        self.decision: Optional[RunDecision] = None
        self.verdict: Optional[PipelineVerdict] = None

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        self._cancel.set()

    def decide(self) -> RunDecision:
        if self.decision is None:
            self.decision = evaluate(self.event, self.definition)
        return self.decision

    def instances(self) -> List[JobInstance]:
        return expand_all(self.definition)

    def run(self) -> Optional[PipelineVerdict]:
        """
        Returns None when the trigger skips the event (nothing dispatched).

        Raises MalformedEvent / MalformedDefinition before dispatch.
        """
        decision = self.decide()
        self.console.print_decision(decision)
        if not decision.run:
            return None

        instances = self.instances()
        execute_fn = partial(
            execute,
            toolchains=self.toolchains,
            secrets=self.secrets,
            repo_root=self.repo_root,
            console=self.console,
            cancel=self._cancel,
            params=decision.params,
            step_timeout=self.step_timeout,
        )
        self.verdict = dispatch_all(
            instances,
            execute_fn,
            max_workers=self.max_workers,
            console=self.console,
        )
        return self.verdict


def run_pipeline(
    definition: PipelineDefinition,
    event: EventDescriptor,
    **kwargs,
) -> Optional[PipelineVerdict]:
    """Evaluate, expand and dispatch in one call. See PipelineRun for kwargs."""
    return PipelineRun(definition, event, **kwargs).run()
