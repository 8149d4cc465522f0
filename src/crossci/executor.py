# executor.py
from __future__ import annotations

import os
import re
import subprocess
import threading
import time
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from . import settings
from .errors import (
    CIError,
    SecretNotFound,
    StepCancelled,
    StepExecutionFailed,
    StepTimeout,
    ToolchainUnavailable,
)
from .model import JobInstance, JobResult, Status, StepOutcome, StepSpec
from .process import collect, terminate
from .secret_store import SecretStore
from .toolchain import ToolchainPool
from .ui.console import Console, get_console

# rustc / clippy diagnostics: "warning: unused variable", "warning[E0170]: ..."
WARNING_LINE = re.compile(r"^\s*warning(\[[^\]]*\])?:", re.MULTILINE)
REDACTED = "***"


def _redact(text: str, secrets: List[str]) -> str:
    for value in secrets:
        if value:
            text = text.replace(value, REDACTED)
    return text


def _has_warnings(output: str) -> bool:
    return WARNING_LINE.search(output) is not None


def run_params_env(params: Mapping[str, str]) -> Dict[str, str]:
    """Bound run parameters as CROSSCI_* env vars."""
    return {f"CROSSCI_{k.upper()}": v for k, v in params.items()}


# ----------------------------------------------------------------------
# Process handling
# ----------------------------------------------------------------------

def _run_process(
    cmd: str,
    *,
    cwd: Path,
    env: Dict[str, str],
    timeout: float,
    cancel: threading.Event,
    poll: float,
    grace: float,
) -> tuple[int, str]:
    """
    Run cmd in a shell, return (exit_code, combined output).

    Raises StepTimeout past the deadline and StepCancelled when the run is
    cancelled; in both cases the process is terminated first. Output
    gathered so far is attached to the error as details["output"].
    """
    proc = subprocess.Popen(
        cmd,
        shell=True,
        cwd=str(cwd),
        env=env,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        start_new_session=True,
    )
    deadline = time.monotonic() + timeout

    while True:
        try:
            out, _ = proc.communicate(timeout=poll)
            return proc.returncode, out or ""
        except subprocess.TimeoutExpired:
            pass

        if cancel.is_set():
            terminate(proc, grace)
            raise StepCancelled(message="run cancelled", details={"output": collect(proc, grace)[0]})
        if time.monotonic() >= deadline:
            terminate(proc, grace)
            raise StepTimeout(
                message=f"step exceeded its {timeout:g}s deadline",
                details={"output": collect(proc, grace)[0]},
            )


# ----------------------------------------------------------------------
# Step / job execution
# ----------------------------------------------------------------------

def _run_step(
    instance: JobInstance,
    step: StepSpec,
    *,
    base_env: Dict[str, str],
    secrets: SecretStore,
    repo_root: Path,
    cancel: threading.Event,
    step_timeout: float,
    output_tail: int,
) -> StepOutcome:
    """Run one step; raises CIError subclasses on failure (with a partial outcome in details)."""
    cwd = (repo_root / (step.cwd or ".")).resolve()
    if not cwd.exists():
        raise StepExecutionFailed(
            message=f"cwd not found: {cwd}",
            job=instance.name,
            step=step.name,
        )

    env = dict(base_env)
    env.update(step.env)

    secret_values: List[str] = []
    for var, secret_name in step.secrets.items():
        try:
            value = secrets.lookup(secret_name)
        except SecretNotFound as e:
            e.job, e.step = instance.name, step.name
            raise
        env[var] = value
        secret_values.append(value)

    if instance.policy.warnings_as_errors:
        flags = env.get("RUSTFLAGS", "")
        if "-D warnings" not in flags:
            env["RUSTFLAGS"] = f"{flags} -D warnings".strip()

    started = time.monotonic()
    try:
        exit_code, output = _run_process(
            step.run,
            cwd=cwd,
            env=env,
            timeout=step.timeout or step_timeout,
            cancel=cancel,
            poll=settings.POLL_INTERVAL,
            grace=settings.CANCEL_GRACE,
        )
    except (StepTimeout, StepCancelled) as e:
        e.job, e.step = instance.name, step.name
        e.details["output"] = _redact(e.details.get("output", ""), secret_values)[-output_tail:]
        e.details["duration"] = time.monotonic() - started
        raise
    except OSError as e:
        raise StepExecutionFailed(
            message=f"could not start step: {e}",
            job=instance.name,
            step=step.name,
            details={"duration": time.monotonic() - started},
        ) from e

    duration = time.monotonic() - started
    output = _redact(output, secret_values)
    # scan everything the step printed; only the tail is kept
    warned = instance.policy.warnings_as_errors and _has_warnings(output)
    output = output[-output_tail:]

    if exit_code != 0:
        raise StepExecutionFailed(
            message=f"exit status {exit_code}: {step.run}",
            job=instance.name,
            step=step.name,
            details={"exit_code": exit_code, "output": output, "duration": duration},
        )
    if warned:
        raise StepExecutionFailed(
            message="warnings are treated as errors",
            job=instance.name,
            step=step.name,
            details={"exit_code": exit_code, "output": output, "duration": duration},
        )

    return StepOutcome(
        name=step.name,
        status=Status.SUCCEEDED,
        exit_code=exit_code,
        duration=duration,
        output=output,
    )


def _skipped(steps) -> List[StepOutcome]:
    return [StepOutcome(name=s.name, status=Status.SKIPPED) for s in steps]


def execute(
    instance: JobInstance,
    *,
    toolchains: ToolchainPool,
    secrets: SecretStore,
    repo_root: str | Path = ".",
    console: Optional[Console] = None,
    cancel: Optional[threading.Event] = None,
    params: Optional[Mapping[str, str]] = None,
    step_timeout: float | None = None,
    output_tail: int | None = None,
) -> JobResult:
    """
    Run one job instance to a terminal JobResult.

    Never raises for per-instance problems: toolchain, secret, step and
    timeout failures are all recorded in the result.
    """
    console = console or get_console()
    cancel = cancel or threading.Event()
    repo_root_p = Path(repo_root).resolve()
    step_timeout = step_timeout or settings.STEP_TIMEOUT
    output_tail = output_tail or settings.OUTPUT_TAIL
    started = time.monotonic()

    def finish(status: str, outcomes: List[StepOutcome], error: str | None = None) -> JobResult:
        result = JobResult(
            job=instance.name,
            template=instance.template,
            status=status,
            steps=tuple(outcomes),
            error=error,
            duration=time.monotonic() - started,
        )
        console.print_job_result(result)
        return result

    if cancel.is_set():
        return finish(Status.SKIPPED, _skipped(instance.steps), "run cancelled")

    console.print_job_start(instance.name)
    tc = instance.toolchain
    console.print_toolchain(
        instance.name,
        " ".join(
            [tc.channel]
            + [f"+{c}" for c in tc.components]
            + [f"--target {t}" for t in tc.targets]
        ),
    )

    outcomes: List[StepOutcome] = []
    failed = False
    cancelled = False

    try:
        with toolchains.acquire(tc, cancel=cancel) as toolchain_env:
            base_env = os.environ.copy()
            base_env.update(toolchain_env)
            base_env.update(run_params_env(params or {}))
            base_env.update(instance.env)

            for step in instance.steps:
                if cancel.is_set():
                    cancelled = True
                if cancelled or (failed and instance.policy.fail_fast):
                    console.print_step_skipped(instance.name, step.name)
                    outcomes.append(StepOutcome(name=step.name, status=Status.SKIPPED))
                    continue

                console.print_step(instance.name, step.name)
                try:
                    outcome = _run_step(
                        instance,
                        step,
                        base_env=base_env,
                        secrets=secrets,
                        repo_root=repo_root_p,
                        cancel=cancel,
                        step_timeout=step_timeout,
                        output_tail=output_tail,
                    )
                except StepCancelled as e:
                    cancelled = True
                    console.print_step_output(instance.name, e.details.get("output", ""))
                    outcomes.append(
                        StepOutcome(
                            name=step.name,
                            status=Status.SKIPPED,
                            error=e.kind,
                            duration=e.details.get("duration", 0.0),
                            output=e.details.get("output", ""),
                        )
                    )
                    continue
                except CIError as e:
                    failed = True
                    output = e.details.pop("output", "")
                    console.print_step_output(instance.name, output)
                    console.print_failure(
                        instance.name,
                        step.name,
                        e.message,
                        exit_code=e.details.get("exit_code"),
                    )
                    outcomes.append(
                        StepOutcome(
                            name=step.name,
                            status=Status.FAILED,
                            exit_code=e.details.get("exit_code"),
                            error=f"{e.kind}: {e.message}",
                            duration=e.details.get("duration", 0.0),
                            output=output,
                        )
                    )
                    continue

                if console.show_output:
                    console.print_step_output(instance.name, outcome.output)
                outcomes.append(outcome)

    except StepCancelled:
        # cancelled while the toolchain was being prepared
        return finish(Status.SKIPPED, _skipped(instance.steps), "run cancelled")
    except ToolchainUnavailable as e:
        e.job = instance.name
        console.print_failure(instance.name, None, str(e), hint=e.details.get("hint"))
        return finish(Status.FAILED, _skipped(instance.steps), f"{e.kind}: {e.message}")

    if cancelled:
        return finish(Status.SKIPPED, outcomes, "run cancelled")
    return finish(Status.FAILED if failed else Status.SUCCEEDED, outcomes)
