from __future__ import annotations

import threading

import pytest

from crossci.definition import load_definition
from crossci.errors import MalformedDefinition
from crossci.graph import dispatch_all
from crossci.matrix import expand_all
from crossci.model import JobResult, PipelineVerdict, Status, StepOutcome

from tests.conftest import WORKFLOW


def result_for(instance, status=Status.SUCCEEDED, step_status=None):
    step_status = step_status or status
    return JobResult(
        job=instance.name,
        template=instance.template,
        status=status,
        steps=tuple(StepOutcome(name=s.name, status=step_status) for s in instance.steps),
    )


@pytest.fixture
def instances():
    return expand_all(load_definition(WORKFLOW))


def test_failing_clippy_fails_the_verdict_alone(instances):
    def execute_fn(inst):
        if inst.template == "clippy":
            return result_for(inst, Status.FAILED)
        return result_for(inst)

    verdict = dispatch_all(instances, execute_fn, max_workers=4)

    assert not verdict.succeeded
    assert verdict.failing_jobs == ["clippy"]
    assert verdict.failures == {"clippy": "Cargo clippy"}
    assert len(verdict.results) == 7


def test_all_succeed(instances):
    verdict = dispatch_all(instances, result_for)
    assert verdict.succeeded
    assert verdict.failing_jobs == []
    # results come back in dispatch order whatever the completion order
    assert [r.job for r in verdict.results] == [i.name for i in instances]


def test_empty_dispatch_is_a_definition_error():
    with pytest.raises(MalformedDefinition):
        dispatch_all([], result_for)


def test_empty_verdict_never_succeeds():
    assert not PipelineVerdict(results=()).succeeded


def test_instances_run_concurrently(instances):
    builds = [i for i in instances if i.template == "build"]
    barrier = threading.Barrier(len(builds), timeout=5)

    def execute_fn(inst):
        # only passes if all three builds are in flight at once
        barrier.wait()
        return result_for(inst)

    assert dispatch_all(builds, execute_fn, max_workers=len(builds)).succeeded


def test_unexpected_error_is_contained_and_siblings_finish(instances):
    finished = []
    lock = threading.Lock()

    def execute_fn(inst):
        if inst.name == "doc":
            raise RuntimeError("executor blew up")
        with lock:
            finished.append(inst.name)
        return result_for(inst)

    verdict = dispatch_all(instances, execute_fn)

    assert verdict.failing_jobs == ["doc"]
    assert "executor blew up" in verdict.failures["doc"]
    assert len(finished) == 6


def test_verdict_to_dict(instances):
    def execute_fn(inst):
        if inst.name == "format":
            return result_for(inst, Status.FAILED)
        return result_for(inst)

    data = dispatch_all(instances, execute_fn).to_dict()
    assert data["succeeded"] is False
    assert data["failing_jobs"] == ["format"]
    assert data["failures"] == {"format": "Cargo fmt"}
    assert [j["job"] for j in data["jobs"]][:3] == [i.name for i in instances][:3]
