# definition.py
from __future__ import annotations

import json
import runpy
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Mapping

from .dsl import default_triggers, job, matrix, on, sh, wf
from .errors import MalformedDefinition
from .matrix import axis_references
from .model import EventKind, JobTemplate, PipelineDefinition, StepSpec, Trigger

RESERVED_NAME_CHARS = set("[],")


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def _check_refs(template: JobTemplate, text: str | None, where: str, axes: set[str]) -> None:
    for ref in axis_references(text or ""):
        if ref not in axes:
            raise MalformedDefinition(
                message=f"{where} references unknown matrix axis '{ref}'",
                job=template.name,
                details={"known_axes": sorted(axes)},
            )


def _validate_triggers(triggers: List[Trigger]) -> None:
    seen: set[str] = set()
    for t in triggers:
        if t.kind not in EventKind.ALL:
            raise MalformedDefinition(
                message=f"unknown trigger kind '{t.kind}'",
                details={"known": ", ".join(EventKind.ALL)},
            )
        if t.kind in seen:
            raise MalformedDefinition(message=f"trigger '{t.kind}' configured twice")
        seen.add(t.kind)
        if t.kind == EventKind.SCHEDULE and t.enabled and not t.cron:
            raise MalformedDefinition(message="an enabled schedule trigger needs a cron expression")


def _validate_template(template: JobTemplate) -> None:
    if not template.name or RESERVED_NAME_CHARS & set(template.name):
        raise MalformedDefinition(message=f"invalid job name {template.name!r}")
    if not template.steps:
        raise MalformedDefinition(message="job has no steps", job=template.name)
    if not template.toolchain.channel:
        raise MalformedDefinition(message="job has no toolchain channel", job=template.name)

    axes: set[str] = set()
    for axis in template.matrix:
        if not axis.name:
            raise MalformedDefinition(message="matrix axis without a name", job=template.name)
        if axis.name in axes:
            raise MalformedDefinition(message=f"matrix axis '{axis.name}' declared twice", job=template.name)
        if not axis.values:
            raise MalformedDefinition(message=f"matrix axis '{axis.name}' is empty", job=template.name)
        if len(set(axis.values)) != len(axis.values):
            raise MalformedDefinition(
                message=f"matrix axis '{axis.name}' has duplicate values",
                job=template.name,
            )
        axes.add(axis.name)

    for target in template.toolchain.targets:
        _check_refs(template, target, "toolchain target", axes)
    for key, value in template.env.items():
        _check_refs(template, value, f"env {key}", axes)

    for step in template.steps:
        if not step.name or not step.run.strip():
            raise MalformedDefinition(
                message="step needs a name and a command",
                job=template.name,
                step=step.name or None,
            )
        if step.timeout is not None and (
            isinstance(step.timeout, bool) or not isinstance(step.timeout, (int, float)) or step.timeout <= 0
        ):
            raise MalformedDefinition(
                message="step timeout must be a positive number of seconds",
                job=template.name,
                step=step.name,
            )
        for text, where in ((step.name, "step name"), (step.run, "step command"), (step.cwd, "step cwd")):
            _check_refs(template, text, where, axes)
        for key, value in step.env.items():
            _check_refs(template, value, f"step env {key}", axes)


def validate(definition: PipelineDefinition) -> PipelineDefinition:
    """Reject definitions that cannot be dispatched. Returns the definition."""
    if not definition.templates:
        raise MalformedDefinition(message="pipeline defines no jobs")

    names = [t.name for t in definition.templates]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise MalformedDefinition(message=f"Duplicate job names found: {dupes}")

    _validate_triggers(definition.triggers)
    for template in definition.templates:
        _validate_template(template)
    return definition


# ----------------------------------------------------------------------
# Declarative documents (TOML / JSON)
# ----------------------------------------------------------------------

def _string_list(value: Any, what: str, job_name: str | None = None) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, (str, int, float)) for v in value):
        return [str(v) for v in value]
    raise MalformedDefinition(message=f"{what} must be a list of strings", job=job_name)


def _flag(value: Any, what: str, default: bool, job_name: str | None = None) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise MalformedDefinition(message=f"{what} must be true or false, got {value!r}", job=job_name)
    return value


def _timeout(value: Any, job_name: str, step_name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedDefinition(
            message=f"step timeout must be a number of seconds, got {value!r}",
            job=job_name,
            step=step_name,
        )
    return float(value)


def _step_from_dict(data: Any, job_name: str, index: int) -> StepSpec:
    if isinstance(data, str):
        return sh(f"step {index + 1}", data)
    if not isinstance(data, Mapping) or "run" not in data:
        raise MalformedDefinition(message=f"step {index + 1} has no 'run' command", job=job_name)
    name = str(data.get("name") or data["run"])
    return sh(
        name,
        str(data["run"]),
        cwd=data.get("cwd"),
        env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
        secrets={str(k): str(v) for k, v in (data.get("secrets") or {}).items()},
        timeout=_timeout(data.get("timeout"), job_name, name),
    )


def _template_from_dict(name: str, data: Any) -> JobTemplate:
    if not isinstance(data, Mapping):
        raise MalformedDefinition(message="job must be a table", job=name)

    steps_raw = data.get("steps")
    if not isinstance(steps_raw, list) or not steps_raw:
        raise MalformedDefinition(message="job has no steps", job=name)

    toolchain = data.get("toolchain", "stable")
    components = data.get("components")
    targets = data.get("targets")
    if isinstance(toolchain, Mapping):
        components = toolchain.get("components", components)
        targets = toolchain.get("targets", targets)
        toolchain = toolchain.get("channel", "stable")

    axes = data.get("matrix") or {}
    if not isinstance(axes, Mapping):
        raise MalformedDefinition(message="matrix must be a table of axis -> values", job=name)

    return job(
        name,
        steps_list=[_step_from_dict(s, name, i) for i, s in enumerate(steps_raw)],
        title=data.get("name"),
        toolchain=str(toolchain),
        components=_string_list(components, "components", name),
        targets=_string_list(targets, "targets", name),
        matrix=[matrix(k, _string_list(v, f"matrix axis '{k}'", name)) for k, v in axes.items()],
        env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
        fail_fast=_flag(data.get("fail_fast"), "fail_fast", True, name),
        warnings_as_errors=_flag(data.get("warnings_as_errors"), "warnings_as_errors", False, name),
    )


def _triggers_from_dict(raw: Any) -> List[Trigger]:
    if raw is None:
        return default_triggers()
    if isinstance(raw, str):
        raw = [raw]
    if isinstance(raw, list):
        return [on(str(kind)) for kind in raw]
    if not isinstance(raw, Mapping):
        raise MalformedDefinition(message="'on' must be a list of kinds or a table")

    triggers: List[Trigger] = []
    for kind, opts in raw.items():
        opts = opts or {}
        if not isinstance(opts, Mapping):
            raise MalformedDefinition(message=f"trigger '{kind}' options must be a table")
        triggers.append(
            on(
                kind,
                enabled=_flag(opts.get("enabled"), f"trigger '{kind}' enabled", True),
                branches=_string_list(opts.get("branches"), "branches") or None,
                cron=opts.get("cron"),
            )
        )
    return triggers


def definition_from_dict(data: Mapping[str, Any]) -> PipelineDefinition:
    """
    Build a PipelineDefinition from a declarative document:

        [on.push]
        [on.schedule]
        cron = "13 3 * * *"
        enabled = false

        [jobs.build]
        toolchain = "stable"
        targets = ["${{ matrix.target }}"]
        warnings_as_errors = true
        matrix = { target = ["x86_64-unknown-linux-gnu", "thumbv6m-none-eabi"] }
        steps = [{ name = "Build", run = "cargo build --target ${{ matrix.target }}" }]
    """
    jobs_raw = data.get("jobs")
    if not isinstance(jobs_raw, Mapping) or not jobs_raw:
        raise MalformedDefinition(message="pipeline defines no jobs")

    definition = wf(
        *(_template_from_dict(str(n), j) for n, j in jobs_raw.items()),
        triggers=_triggers_from_dict(data.get("on")),
        name=str(data.get("name", "CI")),
    )
    return validate(definition)


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def _load_python(wf_path: Path) -> PipelineDefinition:
    """
    The file must define either:
      - workflow() -> PipelineDefinition | List[JobTemplate]
      - PIPELINE = PipelineDefinition
      - JOBS = [JobTemplate, ...]
    """
    module_name = f"crossci_workflow_{wf_path.stem}"
    globals_dict: Dict[str, Any] = runpy.run_path(str(wf_path), run_name=module_name)

    found: Any = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        found = globals_dict["workflow"]()
    elif "PIPELINE" in globals_dict:
        found = globals_dict["PIPELINE"]
    elif "JOBS" in globals_dict:
        found = globals_dict["JOBS"]

    if isinstance(found, list) and all(isinstance(j, JobTemplate) for j in found):
        found = wf(*found)
    if not isinstance(found, PipelineDefinition):
        raise MalformedDefinition(
            message=(
                "Workflow must return/define a PipelineDefinition or a List[JobTemplate]. "
                "Define workflow(), PIPELINE = wf(...) or JOBS = [job(...), ...]."
            ),
            details={"file": str(wf_path)},
        )
    return found


def load_definition(path: str | Path) -> PipelineDefinition:
    """
    Load a pipeline definition from a .py workflow file or a .toml/.json document.

    Raises:
        FileNotFoundError: the file does not exist
        MalformedDefinition: the file does not describe a dispatchable pipeline
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix == ".py":
        return validate(_load_python(wf_path))

    if wf_path.suffix == ".toml":
        try:
            with wf_path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise MalformedDefinition(message=f"invalid TOML: {e}", details={"file": str(wf_path)}) from e
        return definition_from_dict(data)

    if wf_path.suffix == ".json":
        try:
            data = json.loads(wf_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise MalformedDefinition(message=f"invalid JSON: {e}", details={"file": str(wf_path)}) from e
        if not isinstance(data, Mapping):
            raise MalformedDefinition(message="definition document must be an object")
        return definition_from_dict(data)

    raise MalformedDefinition(message=f"unsupported workflow file type: {wf_path.name}")
