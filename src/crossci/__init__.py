from .dsl import job, sh, matrix, on, wf, JobBuilder, build
from .definition import load_definition
from .runner import PipelineRun, run_pipeline
from .model import (
    EventDescriptor,
    JobInstance,
    JobResult,
    JobTemplate,
    PipelineDefinition,
    PipelineVerdict,
    StepSpec,
)

__all__ = [
    "job", "sh", "matrix", "on", "wf", "JobBuilder", "build",
    "load_definition", "PipelineRun", "run_pipeline",
    "EventDescriptor", "JobInstance", "JobResult", "JobTemplate",
    "PipelineDefinition", "PipelineVerdict", "StepSpec",
]
