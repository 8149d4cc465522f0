from __future__ import annotations

import threading
import time

from crossci.dsl import job, matrix, sh, wf
from crossci.model import Status
from crossci.runner import PipelineRun, run_pipeline

TARGETS = ["x86_64-unknown-linux-gnu", "thumbv6m-none-eabi", "thumbv7em-none-eabi"]


def shell_pipeline(clippy_cmd="true", step_cmd="true"):
    return wf(
        job(
            "build",
            sh("Cargo build", "echo building ${{ matrix.target }} && " + step_cmd),
            targets=["${{ matrix.target }}"],
            matrix=[matrix("target", TARGETS)],
            warnings_as_errors=True,
        ),
        job("test", sh("Cargo test", step_cmd)),
        job("clippy", sh("Cargo clippy", clippy_cmd), components=["clippy"]),
        job("format", sh("Cargo fmt", step_cmd), toolchain="nightly", components=["rustfmt"]),
        job("doc", sh("Cargo doc", step_cmd)),
    )


def test_push_runs_every_instance(push_event, toolchains, provider, secrets, tmp_path):
    verdict = run_pipeline(
        shell_pipeline(),
        push_event,
        repo_root=tmp_path,
        toolchains=toolchains,
        secrets=secrets,
    )

    assert verdict.succeeded
    assert len(verdict.results) == 7
    # three build targets + stable/clippy + nightly/rustfmt + plain stable
    assert len(set(provider.prepared)) == 6


def test_failing_clippy_is_the_only_failure(push_event, toolchains, secrets, tmp_path):
    verdict = run_pipeline(
        shell_pipeline(clippy_cmd="echo 'error: this looks like a bug' && exit 101"),
        push_event,
        repo_root=tmp_path,
        toolchains=toolchains,
        secrets=secrets,
    )

    assert not verdict.succeeded
    assert verdict.failing_jobs == ["clippy"]
    clippy = next(r for r in verdict.results if r.job == "clippy")
    assert clippy.steps[0].exit_code == 101


def test_cancel_leaves_every_instance_terminal(push_event, toolchains, secrets, tmp_path):
    run = PipelineRun(
        shell_pipeline(step_cmd="sleep 30"),
        push_event,
        repo_root=tmp_path,
        toolchains=toolchains,
        secrets=secrets,
        max_workers=3,
    )
    out = {}
    worker = threading.Thread(target=lambda: out.setdefault("verdict", run.run()))
    worker.start()

    time.sleep(0.5)
    run.cancel()
    worker.join(timeout=30)

    assert not worker.is_alive()
    verdict = out["verdict"]
    assert len(verdict.results) == 7
    assert all(r.status in (Status.SKIPPED, Status.SUCCEEDED, Status.FAILED) for r in verdict.results)
    # clippy's step is `true`, everything else was sleeping or never started
    assert {r.job for r in verdict.results if r.status == Status.SKIPPED} >= {"test", "format", "doc"}
    assert not verdict.succeeded
