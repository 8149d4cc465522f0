# graph.py
from __future__ import annotations

import os
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, Optional

from .errors import MalformedDefinition
from .model import JobInstance, JobResult, PipelineVerdict, Status
from .ui.console import Console, get_console


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


def reduce_results(results: Iterable[JobResult]) -> PipelineVerdict:
    """Succeeds iff there is at least one result and every result succeeded."""
    return PipelineVerdict(results=tuple(results))


def dispatch_all(
    instances: Iterable[JobInstance],
    execute_fn: Callable[[JobInstance], JobResult],
    *,
    max_workers: int | None = None,
    console: Optional[Console] = None,
) -> PipelineVerdict:
    """
    Run every job instance and reduce the results into one verdict.

    The graph is flat: instances never depend on each other, so all of them
    are submitted at once and the pool bound is the only limit on
    parallelism. A failure does not cancel siblings; the verdict is only
    produced once every instance reached a terminal status.
    """
    console = console or get_console()
    instances = list(instances)
    if not instances:
        raise MalformedDefinition(message="pipeline expands to zero job instances")

    names = [i.name for i in instances]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise MalformedDefinition(message=f"Duplicate job instance names: {dupes}")

    if max_workers is None:
        max_workers = default_workers()

    results: Dict[str, JobResult] = {}

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="crossci") as pool:
        futures: Dict[Future, JobInstance] = {}
        submitted_at: Dict[str, float] = {}
        for inst in instances:
            submitted_at[inst.name] = time.monotonic()
            futures[pool.submit(execute_fn, inst)] = inst

        for future in as_completed(futures):
            inst = futures[future]
            try:
                results[inst.name] = future.result()
            except Exception as e:
                # the executor records its own failures; this is a bug or a
                # collaborator blowing up, still reported as a failed job
                console.print_failure(inst.name, None, str(e))
                results[inst.name] = JobResult(
                    job=inst.name,
                    template=inst.template,
                    status=Status.FAILED,
                    error=f"{type(e).__name__}: {e}",
                    duration=time.monotonic() - submitted_at[inst.name],
                )

    return reduce_results(results[name] for name in names)

