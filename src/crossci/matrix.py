# matrix.py
from __future__ import annotations

import itertools
import re
from dataclasses import replace
from typing import Dict, List

from .model import JobInstance, JobTemplate, PipelineDefinition, StepSpec, Toolchain

MATRIX_REF = re.compile(r"\$\{\{\s*matrix\.([A-Za-z0-9_-]+)\s*\}\}")


def axis_references(text: str) -> List[str]:
    """Axis names referenced by ``${{ matrix.<axis> }}`` in text."""
    return MATRIX_REF.findall(text or "")


def substitute(text: str, values: Dict[str, str]) -> str:
    # unknown axes are rejected at load time, leave them alone here
    return MATRIX_REF.sub(lambda m: values.get(m.group(1), m.group(0)), text)


def _bind_step(step: StepSpec, values: Dict[str, str]) -> StepSpec:
    if not values:
        return step
    return replace(
        step,
        name=substitute(step.name, values),
        run=substitute(step.run, values),
        cwd=substitute(step.cwd, values) if step.cwd else step.cwd,
        env={k: substitute(v, values) for k, v in step.env.items()},
    )


def _bind_toolchain(toolchain: Toolchain, values: Dict[str, str]) -> Toolchain:
    if not values:
        return toolchain
    return replace(toolchain, targets=tuple(substitute(t, values) for t in toolchain.targets))


def instance_name(template: JobTemplate, values: List[str]) -> str:
    if not template.matrix:
        return template.name
    return f"{template.name}[{','.join(values)}]"


def expand(template: JobTemplate) -> List[JobInstance]:
    """
    Expand a template into one JobInstance per point of its matrix.

    Axes are crossed in declaration order, so the result is deterministic:
        build x target=[a, b] x feat=[x, y]
          -> build[a,x], build[a,y], build[b,x], build[b,y]

    A template with no axes yields exactly one instance named after it.
    """
    axes = template.matrix
    out: List[JobInstance] = []

    for combo in itertools.product(*(axis.values for axis in axes)):
        values = {axis.name: v for axis, v in zip(axes, combo)}
        env = {k: substitute(v, values) for k, v in template.env.items()}
        for axis, v in zip(axes, combo):
            env[f"CROSSCI_MATRIX_{_env_key(axis.name)}"] = v

        out.append(
            JobInstance(
                name=instance_name(template, list(combo)),
                template=template.name,
                axis_values=tuple(values.items()),
                toolchain=_bind_toolchain(template.toolchain, values),
                steps=tuple(_bind_step(s, values) for s in template.steps),
                policy=template.policy,
                env=env,
            )
        )

    return out


def expand_all(definition: PipelineDefinition) -> List[JobInstance]:
    instances: List[JobInstance] = []
    for template in definition.templates:
        instances.extend(expand(template))
    return instances


def _env_key(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "_", name).upper()
