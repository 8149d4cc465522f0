# settings.py
from __future__ import annotations

import os


def _int_or_none(raw: str | None) -> int | None:
    return int(raw) if raw else None


def _flag(raw: str | None, default: bool) -> bool:
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


WORKFLOW = os.environ.get("CROSSCI_WORKFLOW", "crossci_workflow.py")
MAX_WORKERS = _int_or_none(os.environ.get("CROSSCI_WORKERS"))

# per-step deadline unless the step sets its own
STEP_TIMEOUT = float(os.environ.get("CROSSCI_STEP_TIMEOUT", "3600"))
CANCEL_GRACE = float(os.environ.get("CROSSCI_CANCEL_GRACE", "5"))
POLL_INTERVAL = float(os.environ.get("CROSSCI_POLL_INTERVAL", "0.2"))

RUSTUP = os.environ.get("CROSSCI_RUSTUP", "rustup")
SECRET_PREFIX = os.environ.get("CROSSCI_SECRET_PREFIX", "")

# how much of a step's output is kept in its outcome
OUTPUT_TAIL = int(os.environ.get("CROSSCI_OUTPUT_TAIL", "4000"))

CANCEL_SUPERSEDED = _flag(os.environ.get("CROSSCI_CANCEL_SUPERSEDED"), True)

# finished runs the event receiver remembers for GET /runs/{id}
RUN_HISTORY = int(os.environ.get("CROSSCI_RUN_HISTORY", "200"))
