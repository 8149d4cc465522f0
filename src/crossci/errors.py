# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - recording into a JobResult
      - debugging without full tracebacks
    """
    message: str
    job: str | None = None
    step: str | None = None
    details: dict = field(default_factory=dict)

    kind = "ci_error"

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ---- run-level: abort before any job is dispatched ----

class MalformedEvent(CIError):
    kind = "malformed_event"


class MalformedDefinition(CIError):
    kind = "malformed_definition"


# ---- instance-level: recorded in the JobResult, never propagated ----

class ToolchainUnavailable(CIError):
    kind = "toolchain_unavailable"


class SecretNotFound(CIError):
    kind = "secret_not_found"


class StepExecutionFailed(CIError):
    kind = "step_failed"


class StepTimeout(CIError):
    kind = "step_timeout"


class StepCancelled(CIError):
    kind = "step_cancelled"
