# process.py
from __future__ import annotations

import os
import signal
import subprocess


def terminate(proc: subprocess.Popen, grace: float) -> None:
    """SIGTERM the process group, SIGKILL it if it lingers."""
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except (ProcessLookupError, PermissionError, AttributeError):
        proc.terminate()
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError, AttributeError):
            proc.kill()
        proc.wait()


def collect(proc: subprocess.Popen, grace: float) -> tuple[str, str]:
    """Whatever (stdout, stderr) a terminated process left behind."""
    try:
        out, err = proc.communicate(timeout=grace)
    except subprocess.TimeoutExpired:
        return "", ""
    return out or "", err or ""
