"""Console output formatting utilities for crossci."""

from __future__ import annotations

import sys
import threading
from typing import Optional

from ..model import JobResult, PipelineVerdict, RunDecision, Status


class Console:
    """
    Centralized console output formatting.

    Job instances run concurrently, so every line about an instance is
    prefixed with its name and written under a lock.
    """

    def __init__(self, debug: bool = False, show_output: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            show_output: If True, echo captured step output, not only on failure
        """
        self.debug = debug
        self.show_output = show_output
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        event: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._emit(
            "",
            "RUN STARTED",
            f"Repository: {repository}",
            f"Workflow: {workflow}",
            f"Event: {event}",
            f"Jobs: {job_count}",
            "",
        )

    def print_decision(self, decision: RunDecision) -> None:
        if decision.run:
            bound = ", ".join(f"{k}={v}" for k, v in decision.params.items())
            self._emit(f"TRIGGER: run ({bound})")
        else:
            self._emit(f"TRIGGER: skip ({decision.reason})")

    def print_plan_job(self, name: str, detail: str) -> None:
        """Print one expanded job instance."""
        self._emit(f"  {name} ({detail})")

    def print_job_start(self, name: str) -> None:
        self._emit(f"[{name}] JOB STARTED")

    def print_toolchain(self, name: str, detail: str) -> None:
        self._emit(f"[{name}] TOOLCHAIN: {detail}")

    def print_step(self, name: str, step: str) -> None:
        self._emit(f"[{name}] STEP: {step}")

    def print_step_output(self, name: str, output: str) -> None:
        if not output:
            return
        self._emit(*(f"[{name}] | {line}" for line in output.rstrip("\n").splitlines()))

    def print_step_skipped(self, name: str, step: str) -> None:
        self._emit(f"[{name}] STEP SKIPPED: {step}")

    def print_failure(
        self,
        name: str,
        step: str | None,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job instance name
            step: Step name, or None for an instance-level failure
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
        """
        lines = [f"[{name}] STEP FAILED: {step}" if step else f"[{name}] JOB FAILED"]
        if exit_code is not None:
            lines.append(f"[{name}] Exit code: {exit_code}")
        if hint:
            lines.append(f"[{name}] Hint: {hint}")
        if self.debug:
            lines.append(f"[{name}] Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"[{name}] Error: {error_line}")
        self._emit(*lines)

    def print_job_result(self, result: JobResult) -> None:
        self._emit(f"[{result.job}] STATUS: {result.status} ({result.duration:.1f}s)")

    def print_verdict(self, verdict: PipelineVerdict) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for r in verdict.results:
            lines.append(f"  {r.job}: {r.status.upper()}")
        lines.append("")
        if verdict.succeeded:
            lines.append("PIPELINE: SUCCEEDED")
        else:
            lines.append("PIPELINE: FAILED")
            for job, first in verdict.failures.items():
                lines.append(f"  {job}: {first or Status.SKIPPED}")
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = ["", f"ERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.extend(["", suggestion])
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
