# cli.py
from __future__ import annotations

import json
import sys
import threading
from pathlib import Path

import click

from crossci import settings
from crossci.definition import load_definition
from crossci.errors import CIError, MalformedDefinition, MalformedEvent
from crossci.git_facts.git import event_from_git
from crossci.matrix import expand_all
from crossci.model import EventDescriptor, EventKind, PipelineDefinition
from crossci.runner import PipelineRun
from crossci.toolchain import PreinstalledProvider, RustupProvider, ToolchainPool
from crossci.trigger import evaluate, event_from_dict, event_from_github_env
from crossci.ui.console import Console, get_console, set_console

# exit codes
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def _load(workflow: str | None) -> tuple[Path, PipelineDefinition]:
    console = get_console()
    path = Path(workflow or settings.WORKFLOW)
    try:
        return path, load_definition(path)
    except FileNotFoundError:
        console.print_error(
            "Workflow file not found",
            f"Could not find workflow file: {path}",
            suggestion="Create crossci_workflow.py or specify one:\n  crossci run --workflow ci.toml",
        )
        sys.exit(EXIT_FAILED)
    except MalformedDefinition as e:
        console.print_error("Invalid pipeline definition", str(e))
        sys.exit(EXIT_FAILED)


def _build_event(
    kind: str | None,
    event_file: str | None,
    branch: str | None,
    commit: str | None,
    repository: str | None,
    repo_root: str,
) -> EventDescriptor:
    """
    --event-file wins, then the GitHub Actions environment (unless --event
    was given), then local git facts. Explicit options override fields.
    """
    event: EventDescriptor | None = None
    if event_file:
        data = json.loads(Path(event_file).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise MalformedEvent(message=f"{event_file} must contain a JSON object")
        event = event_from_dict(data)
    elif kind is None:
        event = event_from_github_env()
    if event is None:
        event = event_from_git(kind or EventKind.PUSH, cwd=repo_root)

    return EventDescriptor(
        kind=event.kind,
        branch=branch or event.branch,
        commit=commit or event.commit,
        repository=repository or event.repository,
        extra=event.extra,
    )


def _toolchain_pool(kind: str, rustup: str) -> ToolchainPool:
    if kind == "preinstalled":
        return ToolchainPool(PreinstalledProvider())
    return ToolchainPool(RustupProvider(rustup))


def event_options(fn):
    fn = click.option("--repository", default=None, help="Repository identity (defaults to git remote)")(fn)
    fn = click.option("--commit", default=None, help="Commit SHA (defaults to HEAD)")(fn)
    fn = click.option("--branch", default=None, help="Branch (defaults to the current branch)")(fn)
    fn = click.option(
        "--event-file",
        default=None,
        type=click.Path(exists=True, dir_okay=False),
        help="JSON event descriptor",
    )(fn)
    fn = click.option(
        "--event",
        "kind",
        default=None,
        help="Event kind: push, pull_request or schedule (defaults to $GITHUB_EVENT_NAME, then push)",
    )(fn)
    fn = click.option("--repo-root", default=".", show_default=True, help="Checked out tree the jobs run in")(fn)
    fn = click.option(
        "--workflow",
        default=None,
        help=f"Pipeline definition (.py, .toml or .json; defaults to {settings.WORKFLOW})",
    )(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--show-output", is_flag=True, default=False, help="Echo output of successful steps too")
@click.pass_context
def cli(ctx, debug, show_output):
    """crossci: cross-target CI pipeline orchestrator."""
    set_console(Console(debug=debug, show_output=show_output))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@event_options
@click.pass_context
def plan(ctx, workflow, repo_root, kind, event_file, branch, commit, repository):
    """Show the trigger decision and the job instances a run would dispatch."""
    console = get_console()
    path, definition = _load(workflow)

    try:
        event = _build_event(kind, event_file, branch, commit, repository, repo_root)
        decision = evaluate(event, definition)
    except (CIError, ValueError) as e:
        console.print_error("Malformed event", str(e))
        sys.exit(EXIT_FAILED)

    console.print_decision(decision)
    if not decision.run:
        return

    console.print_info(f"\nPLAN ({path.name})")
    for inst in expand_all(definition):
        tc = inst.toolchain
        detail = tc.channel
        if tc.components:
            detail += " +" + ",".join(tc.components)
        if tc.targets:
            detail += " --target " + ",".join(tc.targets)
        console.print_plan_job(inst.name, f"{detail}; {len(inst.steps)} step(s)")


@cli.command()
@event_options
@click.option("--workers", default=None, type=int, help="Number of parallel job instances")
@click.option("--step-timeout", default=None, type=float, help="Default per-step deadline in seconds")
@click.option(
    "--toolchains",
    type=click.Choice(["rustup", "preinstalled"]),
    default="rustup",
    show_default=True,
    help="Install toolchains with rustup, or assume the runner provisioned them",
)
@click.option("--rustup", default=settings.RUSTUP, show_default=True, help="rustup binary")
@click.option("--report", default=None, type=click.Path(dir_okay=False), help="Write the verdict as JSON")
@click.pass_context
def run(ctx, workflow, repo_root, kind, event_file, branch, commit, repository,
        workers, step_timeout, toolchains, rustup, report):
    """Run the pipeline for one event."""
    console = get_console()
    path, definition = _load(workflow)

    try:
        event = _build_event(kind, event_file, branch, commit, repository, repo_root)
    except (CIError, ValueError) as e:
        console.print_error("Malformed event", str(e))
        sys.exit(EXIT_FAILED)

    pipeline_run = PipelineRun(
        definition,
        event,
        repo_root=repo_root,
        toolchains=_toolchain_pool(toolchains, rustup),
        max_workers=workers,
        step_timeout=step_timeout,
        console=console,
    )

    try:
        decision = pipeline_run.decide()
    except MalformedEvent as e:
        console.print_error("Malformed event", str(e))
        sys.exit(EXIT_FAILED)

    if decision.run:
        console.print_run_started(
            repository=event.repository or Path(repo_root).resolve().name,
            workflow=path.name,
            event=event.kind,
            job_count=len(pipeline_run.instances()),
        )

    outcome: dict = {}

    def target():
        try:
            outcome["verdict"] = pipeline_run.run()
        except BaseException as e:
            outcome["error"] = e

    # run off the main thread so Ctrl-C can cancel cooperatively
    worker = threading.Thread(target=target, name="crossci-run")
    worker.start()
    try:
        while worker.is_alive():
            worker.join(timeout=0.5)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user, cancelling jobs...")
        pipeline_run.cancel()
        worker.join()
        sys.exit(EXIT_INTERRUPTED)

    if "error" in outcome:
        e = outcome["error"]
        if isinstance(e, CIError):
            console.print_error("Pipeline aborted", str(e))
        else:
            console.print_exception(e)
        sys.exit(EXIT_FAILED)

    verdict = outcome.get("verdict")
    if verdict is None:
        # trigger skipped the event: nothing dispatched, nothing to report
        return

    console.print_verdict(verdict)
    if report:
        Path(report).write_text(json.dumps(verdict.to_dict(), indent=2), encoding="utf-8")
        console.print_debug(f"verdict written to {report}")

    if not verdict.succeeded:
        sys.exit(EXIT_FAILED)


@cli.command()
@click.option(
    "--workflow",
    default=None,
    help=f"Pipeline definition (defaults to {settings.WORKFLOW})",
)
@click.option("--repo-root", default=".", show_default=True, help="Checked out tree the jobs run in")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, type=int, show_default=True)
@click.option("--workers", default=None, type=int, help="Number of parallel job instances per run")
@click.option(
    "--toolchains",
    type=click.Choice(["rustup", "preinstalled"]),
    default="rustup",
    show_default=True,
)
@click.option("--rustup", default=settings.RUSTUP, show_default=True, help="rustup binary")
@click.pass_context
def serve(ctx, workflow, repo_root, host, port, workers, toolchains, rustup):
    """Receive hosting-platform events over HTTP and run them."""
    import uvicorn

    from crossci.webhook import create_app

    _path, definition = _load(workflow)
    app = create_app(
        definition,
        repo_root=repo_root,
        toolchains=_toolchain_pool(toolchains, rustup),
        max_workers=workers,
    )
    uvicorn.run(app, host=host, port=port)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
