# src/crossci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .model import (
    EventKind,
    FailurePolicy,
    JobTemplate,
    MatrixAxis,
    PipelineDefinition,
    StepSpec,
    Toolchain,
    Trigger,
)


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    secrets: Optional[Dict[str, str]] = None,
    timeout: float | None = None,
) -> StepSpec:
    """Create a shell step. ``secrets`` maps env var name -> secret name."""
    return StepSpec(
        name=name,
        run=cmd,
        cwd=cwd,
        env=dict(env or {}),
        secrets=dict(secrets or {}),
        timeout=timeout,
    )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(key: str, values: Iterable[Any]) -> MatrixAxis:
    """
    One matrix axis.

    Example:
        job("build", sh("Build", "cargo build --target ${{ matrix.target }}"),
            matrix=[matrix("target", ["x86_64-unknown-linux-gnu", "thumbv6m-none-eabi"])])
    """
    return MatrixAxis(name=key, values=tuple(str(v) for v in values))


MatrixSpec = Union[MatrixAxis, Sequence[MatrixAxis], Mapping[str, Iterable[Any]], None]


def _axes(spec: MatrixSpec) -> List[MatrixAxis]:
    if spec is None:
        return []
    if isinstance(spec, MatrixAxis):
        return [spec]
    if isinstance(spec, Mapping):
        return [matrix(k, v) for k, v in spec.items()]
    return list(spec)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: StepSpec,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[StepSpec]] = None,  # allow: job("x", steps_list=[...])
    title: str | None = None,
    toolchain: str = "stable",
    components: Sequence[str] = (),
    targets: Sequence[str] = (),
    matrix: MatrixSpec = None,
    env: Optional[Dict[str, str]] = None,
    fail_fast: bool = True,
    warnings_as_errors: bool = False,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> JobTemplate:
    steps_final: List[StepSpec] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return JobTemplate(
        name=name,
        title=title,
        steps=steps_final,
        toolchain=Toolchain(
            channel=toolchain,
            components=tuple(components),
            targets=tuple(targets),
        ),
        matrix=_axes(matrix),
        policy=FailurePolicy(fail_fast=fail_fast, warnings_as_errors=warnings_as_errors),
        env=dict(env or {}),
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._title: str | None = None
        self._steps: list[StepSpec] = []
        self._channel: str = "stable"
        self._components: list[str] = []
        self._targets: list[str] = []
        self._axes: list[MatrixAxis] = []
        self._env: dict[str, str] = {}
        self._fail_fast: bool = True
        self._warnings_as_errors: bool = False

    def titled(self, title: str):
        self._title = title
        return self

    def use_toolchain(self, channel: str, *components: str):
        self._channel = channel
        self._components.extend(components)
        return self

    def for_targets(self, *targets: str):
        self._targets.extend(targets)
        return self

    def over(self, key: str, values: Iterable[Any]):
        self._axes.append(matrix(key, values))
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, **kwargs):
        self._steps.append(sh(name, run, cwd=cwd, **kwargs))
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def keep_going(self, enabled: bool = True):
        """Run every step even after one failed."""
        self._fail_fast = not enabled
        return self

    def deny_warnings(self, enabled: bool = True):
        self._warnings_as_errors = enabled
        return self

    def build(self) -> JobTemplate:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")

        return JobTemplate(
            name=self.name,
            title=self._title,
            steps=list(self._steps),
            toolchain=Toolchain(
                channel=self._channel,
                components=tuple(self._components),
                targets=tuple(self._targets),
            ),
            matrix=list(self._axes),
            policy=FailurePolicy(
                fail_fast=self._fail_fast,
                warnings_as_errors=self._warnings_as_errors,
            ),
            env=dict(self._env),
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------

def on(
    kind: str,
    *,
    enabled: bool = True,
    branches: Optional[Sequence[str]] = None,
    cron: str | None = None,
) -> Trigger:
    return Trigger(
        kind=kind,
        enabled=enabled,
        branches=tuple(branches) if branches else None,
        cron=cron,
    )


def default_triggers() -> List[Trigger]:
    """push + pull_request, no schedule."""
    return [on(EventKind.PUSH), on(EventKind.PULL_REQUEST)]


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: JobTemplate,
    triggers: Optional[Sequence[Trigger]] = None,
    name: str = "CI",
) -> PipelineDefinition:
    """
    Workflow definition helper.

    Users can write:
        from crossci import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
            )

    Or define PIPELINE directly:
        PIPELINE = wf(job(...), job(...))
    """
    return PipelineDefinition(
        templates=list(jobs),
        triggers=list(triggers) if triggers is not None else default_triggers(),
        name=name,
    )
