# crossci_workflow.py
# Gates every push and pull request of the crate: cross-target build,
# unit tests, clippy, rustfmt and rustdoc.
from __future__ import annotations

from crossci.dsl import wf, job, matrix, on
from crossci.steps import cargo_build, cargo_clippy, cargo_doc, cargo_fmt_check, cargo_test

TARGETS = [
    "x86_64-unknown-linux-gnu",
    "thumbv6m-none-eabi",
    "thumbv7em-none-eabi",
]


def workflow():
    return wf(
        # One build per target triple, warnings fail the build
        job(
            "build",
            cargo_build(target="${{ matrix.target }}"),
            title="Cargo Build",
            toolchain="stable",
            targets=["${{ matrix.target }}"],
            matrix=[matrix("target", TARGETS)],
            warnings_as_errors=True,
        ),

        # Host-only unit tests
        job(
            "test",
            cargo_test(),
            title="Unit Tests",
            toolchain="stable",
        ),

        # Lints; the token lets wrappers post annotations
        job(
            "clippy",
            cargo_clippy(token_secret="GITHUB_TOKEN"),
            title="Clippy",
            toolchain="stable",
            components=["clippy"],
        ),

        # Check formatting without modifying the tree
        job(
            "format",
            cargo_fmt_check(channel="nightly"),
            title="Rust Format",
            toolchain="nightly",
            components=["rustfmt"],
        ),

        job(
            "doc",
            cargo_doc(),
            title="doc",
            toolchain="stable",
        ),

        triggers=[
            on("push"),
            on("pull_request"),
            # nightly run, off until the crate wants it
            on("schedule", cron="13 3 * * *", enabled=False),
        ],
    )
