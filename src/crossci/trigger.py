# trigger.py
from __future__ import annotations

import os
from fnmatch import fnmatch
from typing import Any, Dict, Mapping, Optional

from .errors import MalformedEvent
from .model import EventDescriptor, EventKind, PipelineDefinition, RunDecision

# fields an event must carry before a run can be bound from it
REQUIRED_FIELDS = {
    EventKind.PUSH: ("branch", "commit", "repository"),
    EventKind.PULL_REQUEST: ("branch", "commit", "repository"),
    EventKind.SCHEDULE: (),
}


def _normalize_ref(ref: str | None) -> str | None:
    if not ref:
        return None
    for prefix in ("refs/heads/", "refs/tags/"):
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


def evaluate(event: EventDescriptor, definition: PipelineDefinition) -> RunDecision:
    """
    Decide whether an event starts a run, and with which parameters.

    Events of a kind that is not configured, or configured but disabled,
    are skipped rather than rejected. A malformed event of an enabled kind
    raises MalformedEvent.
    """
    trigger = definition.trigger(event.kind)
    if trigger is None:
        return RunDecision.skip(f"no '{event.kind}' trigger configured")
    if not trigger.enabled:
        return RunDecision.skip(f"'{event.kind}' trigger is disabled")

    missing = [f for f in REQUIRED_FIELDS.get(event.kind, ()) if not getattr(event, f)]
    if missing:
        raise MalformedEvent(
            message=f"'{event.kind}' event is missing required field(s): {', '.join(missing)}",
            details={"kind": event.kind},
        )

    if trigger.branches and event.branch is not None:
        if not any(fnmatch(event.branch, p) for p in trigger.branches):
            return RunDecision.skip(
                f"branch '{event.branch}' does not match {list(trigger.branches)}"
            )

    params: Dict[str, str] = {"event": event.kind}
    if event.kind == EventKind.SCHEDULE and trigger.cron:
        params["cron"] = trigger.cron
    for key in ("branch", "commit", "repository"):
        value = getattr(event, key)
        if value:
            params[key] = value

    return RunDecision.admit(params)


def event_from_dict(data: Mapping[str, Any]) -> EventDescriptor:
    """
    Build an EventDescriptor from a JSON-ish payload.

    Accepts either ``kind`` or ``event``, ``branch`` or ``ref``, and
    ``commit`` or ``sha``.
    """
    kind = data.get("kind") or data.get("event")
    if not kind or not isinstance(kind, str):
        raise MalformedEvent(message="event payload has no 'kind'")

    known = {"kind", "event", "branch", "ref", "commit", "sha", "repository"}
    return EventDescriptor(
        kind=kind,
        branch=_normalize_ref(data.get("branch") or data.get("ref")),
        commit=data.get("commit") or data.get("sha"),
        repository=data.get("repository"),
        extra={k: v for k, v in data.items() if k not in known},
    )


def event_from_github_env(environ: Optional[Mapping[str, str]] = None) -> EventDescriptor | None:
    """
    Build an EventDescriptor from GitHub Actions style environment variables.

    Returns None when GITHUB_EVENT_NAME is not set.
    """
    env = os.environ if environ is None else environ
    kind = env.get("GITHUB_EVENT_NAME")
    if not kind:
        return None

    # PR runs check out a merge ref, the head branch is the useful one
    branch = env.get("GITHUB_HEAD_REF") or env.get("GITHUB_REF")
    return EventDescriptor(
        kind=kind,
        branch=_normalize_ref(branch),
        commit=env.get("GITHUB_SHA") or None,
        repository=env.get("GITHUB_REPOSITORY") or None,
    )
