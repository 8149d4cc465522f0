# git.py
# Small, focused wrapper around the Git CLI.
# Local runs have no hosting platform to describe the event, so the CLI
# asks git for the branch, commit and repository instead.

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Optional

from ..model import EventDescriptor


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    """Absolute path to the root of the current Git repository."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of HEAD."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> Optional[str]:
    """
    Name of the checked out branch, or None on a detached HEAD.

    `git rev-parse --abbrev-ref HEAD` prints the literal "HEAD" when detached.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return None if name == "HEAD" else name


def remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def repository_slug(url: str) -> str:
    """
    "owner/name" from a remote URL.

        git@github.com:owner/name.git     -> owner/name
        https://github.com/owner/name.git -> owner/name
    """
    path = re.sub(r"^[a-z+]+://[^/]+/", "", url.strip())
    path = re.sub(r"^[^@/]+@[^:]+:", "", path)
    path = path.rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    return path


def event_from_git(kind: str = "push", cwd: Optional[str] = None) -> EventDescriptor:
    """
    Describe the local checkout as an event of the given kind.

    Fields git cannot tell us are left as None; the trigger evaluator decides
    whether that makes the event malformed.
    """
    def attempt(fn, *args):
        try:
            return fn(*args, cwd=cwd)
        except (subprocess.CalledProcessError, FileNotFoundError):
            return None

    url = attempt(remote_url, "origin")
    repository = repository_slug(url) if url else None
    if repository is None:
        root = attempt(repo_root)
        repository = root.name if root else None

    return EventDescriptor(
        kind=kind,
        branch=attempt(current_branch),
        commit=attempt(head_sha),
        repository=repository,
    )
