# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


class EventKind:
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    SCHEDULE = "schedule"

    ALL = (PUSH, PULL_REQUEST, SCHEDULE)


class Status:
    """Terminal status of a step or a job instance."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------
# Events / triggers
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class EventDescriptor:
    """The occurrence that may start a pipeline run (push, PR, schedule)."""
    kind: str
    branch: str | None = None
    commit: str | None = None
    repository: str | None = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Trigger:
    """
    A configured trigger kind.

    A disabled trigger is inert: events of its kind are skipped, the same as
    events of a kind that is not configured at all.
    """
    kind: str
    enabled: bool = True
    branches: Optional[Tuple[str, ...]] = None   # fnmatch patterns
    cron: str | None = None


@dataclass(frozen=True)
class RunDecision:
    run: bool
    params: Dict[str, str] = field(default_factory=dict)
    reason: str = ""

    @classmethod
    def admit(cls, params: Dict[str, str]) -> RunDecision:
        return cls(run=True, params=dict(params), reason="admitted")

    @classmethod
    def skip(cls, reason: str) -> RunDecision:
        return cls(run=False, params={}, reason=reason)


# ---------------------------------------------------------------------
# Pipeline definition
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Toolchain:
    """Compiler channel plus the extra components and targets to install."""
    channel: str = "stable"
    components: Tuple[str, ...] = ()
    targets: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FailurePolicy:
    fail_fast: bool = True
    warnings_as_errors: bool = False


@dataclass(frozen=True)
class MatrixAxis:
    name: str
    values: Tuple[str, ...]


@dataclass(frozen=True)
class StepSpec:
    """A single command inside a job."""
    name: str
    run: str
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict)
    # env var name -> secret name
    secrets: Dict[str, str] = field(default_factory=dict)
    timeout: float | None = None


@dataclass
class JobTemplate:
    """
    A named unit of verification work, before matrix expansion.

    Step commands, env values and toolchain targets may reference matrix
    axes as ``${{ matrix.<axis> }}``.
    """
    name: str
    steps: List[StepSpec]
    toolchain: Toolchain = field(default_factory=Toolchain)
    matrix: List[MatrixAxis] = field(default_factory=list)
    policy: FailurePolicy = field(default_factory=FailurePolicy)
    title: str | None = None
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.title or self.name


@dataclass
class PipelineDefinition:
    templates: List[JobTemplate]
    triggers: List[Trigger] = field(default_factory=list)
    name: str = "CI"

    def template(self, name: str) -> JobTemplate:
        for t in self.templates:
            if t.name == name:
                return t
        raise KeyError(name)

    def trigger(self, kind: str) -> Trigger | None:
        for t in self.triggers:
            if t.kind == kind:
                return t
        return None


@dataclass(frozen=True)
class JobInstance:
    """One fully bound point of a template's matrix, e.g. ``build[thumbv6m-none-eabi]``."""
    name: str
    template: str
    axis_values: Tuple[Tuple[str, str], ...]
    toolchain: Toolchain
    steps: Tuple[StepSpec, ...]
    policy: FailurePolicy
    env: Dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class StepOutcome:
    name: str
    status: str
    exit_code: int | None = None
    error: str | None = None
    duration: float = 0.0
    output: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "exit_code": self.exit_code,
            "error": self.error,
            "duration": round(self.duration, 3),
        }


@dataclass(frozen=True)
class JobResult:
    job: str
    template: str
    status: str
    steps: Tuple[StepOutcome, ...] = ()
    error: str | None = None
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == Status.SUCCEEDED

    @property
    def first_failure(self) -> str | None:
        """Name of the first failing step, or the instance-level error."""
        for s in self.steps:
            if s.status == Status.FAILED:
                return s.name
        return self.error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "template": self.template,
            "status": self.status,
            "error": self.error,
            "duration": round(self.duration, 3),
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass(frozen=True)
class PipelineVerdict:
    results: Tuple[JobResult, ...]

    @property
    def succeeded(self) -> bool:
        return bool(self.results) and all(r.succeeded for r in self.results)

    @property
    def failing_jobs(self) -> List[str]:
        return [r.job for r in self.results if not r.succeeded]

    @property
    def failures(self) -> Dict[str, str | None]:
        return {r.job: r.first_failure for r in self.results if not r.succeeded}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failing_jobs": self.failing_jobs,
            "failures": self.failures,
            "jobs": [r.to_dict() for r in self.results],
        }
