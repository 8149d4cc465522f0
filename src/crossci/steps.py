# steps.py
from __future__ import annotations

from typing import Dict, Optional

from .dsl import sh
from .model import StepSpec


# ---------------------------------------------------------------------
# Cargo step helpers
# ---------------------------------------------------------------------

def _cargo(
    subcommand: str,
    args: str | None,
    *,
    channel: str | None = None,
    extra: str | None = None,
) -> str:
    # "cargo +nightly fmt -- --check"
    cmd = ["cargo"]
    if channel:
        cmd.append(f"+{channel}")
    cmd.append(subcommand)
    line = " ".join(cmd)
    if args:
        line = f"{line} {args}"
    if extra:
        line = f"{line} -- {extra}"
    return line


def cargo_build(name: str = "Cargo build", *, target: str | None = None, args: str | None = None, **kw) -> StepSpec:
    parts = []
    if target:
        parts.append(f"--target {target}")
    if args:
        parts.append(args)
    return sh(name, _cargo("build", " ".join(parts) or None), **kw)


def cargo_test(name: str = "Cargo test", *, args: str | None = None, **kw) -> StepSpec:
    return sh(name, _cargo("test", args), **kw)


def cargo_clippy(
    name: str = "Cargo clippy",
    *,
    args: str | None = None,
    deny_warnings: bool = True,
    token_secret: str | None = None,
    **kw,
) -> StepSpec:
    """
    Run clippy. With ``token_secret`` the named secret is bound to
    GITHUB_TOKEN for the step, for annotation-posting wrappers.
    """
    secrets: Optional[Dict[str, str]] = {"GITHUB_TOKEN": token_secret} if token_secret else None
    return sh(
        name,
        _cargo("clippy", args, extra="-D warnings" if deny_warnings else None),
        secrets=secrets,
        **kw,
    )


def cargo_fmt_check(name: str = "Cargo fmt", *, channel: str | None = None, **kw) -> StepSpec:
    """Check formatting without touching the tree."""
    return sh(name, _cargo("fmt", None, channel=channel, extra="--check"), **kw)


def cargo_doc(name: str = "Cargo doc", *, all_features: bool = True, args: str | None = None, **kw) -> StepSpec:
    parts = ["--all-features"] if all_features else []
    if args:
        parts.append(args)
    return sh(name, _cargo("doc", " ".join(parts) or None), **kw)
