# toolchain.py
from __future__ import annotations

import subprocess
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Protocol

from . import settings
from .errors import StepCancelled, ToolchainUnavailable
from .model import Toolchain
from .process import collect, terminate

TOOL_HINTS = {
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "cargo": "Install a Rust toolchain with rustup or fix PATH.",
}


class ToolchainProvider(Protocol):
    def prepare(self, toolchain: Toolchain, cancel: Optional[threading.Event] = None) -> Dict[str, str]:
        """
        Make the toolchain usable; return the env vars that select it.

        Raises StepCancelled if cancel is set before preparation finishes.
        """
        ...


class PreinstalledProvider:
    """The runner already provisioned every channel/component/target."""

    def prepare(self, toolchain: Toolchain, cancel: Optional[threading.Event] = None) -> Dict[str, str]:
        return {"RUSTUP_TOOLCHAIN": toolchain.channel}


class RustupProvider:
    """Installs toolchains with rustup (idempotent on rustup's side)."""

    def __init__(self, rustup: str = "rustup", timeout: float | None = 1800):
        self.rustup = rustup
        self.timeout = timeout

    def install_command(self, toolchain: Toolchain) -> List[str]:
        cmd = [self.rustup, "toolchain", "install", toolchain.channel, "--profile", "minimal"]
        for c in toolchain.components:
            cmd.extend(["--component", c])
        for t in toolchain.targets:
            cmd.extend(["--target", t])
        return cmd

    def _install(self, toolchain: Toolchain, cancel: threading.Event) -> tuple[int, str]:
        """Run the install command, polling for cancellation; return (exit, stderr)."""
        proc = subprocess.Popen(
            self.install_command(toolchain),
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
        deadline = None if self.timeout is None else time.monotonic() + self.timeout

        while True:
            try:
                _, err = proc.communicate(timeout=settings.POLL_INTERVAL)
                return proc.returncode, err or ""
            except subprocess.TimeoutExpired:
                pass

            if cancel.is_set():
                terminate(proc, settings.CANCEL_GRACE)
                collect(proc, settings.CANCEL_GRACE)
                raise StepCancelled(
                    message=f"run cancelled while installing toolchain '{toolchain.channel}'",
                    details={"channel": toolchain.channel},
                )
            if deadline is not None and time.monotonic() >= deadline:
                terminate(proc, settings.CANCEL_GRACE)
                collect(proc, settings.CANCEL_GRACE)
                raise ToolchainUnavailable(
                    message=f"installing toolchain '{toolchain.channel}' timed out",
                    details={"channel": toolchain.channel},
                )

    def prepare(self, toolchain: Toolchain, cancel: Optional[threading.Event] = None) -> Dict[str, str]:
        try:
            exit_code, stderr = self._install(toolchain, cancel or threading.Event())
        except OSError:
            raise ToolchainUnavailable(
                message=f"{self.rustup} is not available",
                details={"hint": TOOL_HINTS["rustup"], "channel": toolchain.channel},
            ) from None

        if exit_code != 0:
            raise ToolchainUnavailable(
                message=f"could not install toolchain '{toolchain.channel}'",
                details={
                    "channel": toolchain.channel,
                    "components": ",".join(toolchain.components) or "-",
                    "targets": ",".join(toolchain.targets) or "-",
                    "exit": exit_code,
                    "stderr": stderr.strip()[-500:],
                },
            )
        return {"RUSTUP_TOOLCHAIN": toolchain.channel}


class ToolchainPool:
    """
    Reference-counted, idempotent toolchain acquisition.

    Concurrent instances asking for the same Toolchain share one
    preparation; a failed preparation is not remembered, so every instance
    that asks again gets its own attempt (and its own failure).
    """

    def __init__(self, provider: ToolchainProvider):
        self.provider = provider
        self._lock = threading.Lock()
        self._key_locks: Dict[Toolchain, threading.Lock] = {}
        self._prepared: Dict[Toolchain, Dict[str, str]] = {}
        self._refs: Dict[Toolchain, int] = {}

    def refcount(self, toolchain: Toolchain) -> int:
        with self._lock:
            return self._refs.get(toolchain, 0)

    def _key_lock(self, toolchain: Toolchain) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(toolchain, threading.Lock())

    @contextmanager
    def acquire(
        self,
        toolchain: Toolchain,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[Dict[str, str]]:
        """
        Prepare (or reuse) toolchain and hold a reference while the block runs.

        With a cancel event, neither waiting for another instance's
        preparation nor the preparation itself outlasts cancellation:
        StepCancelled is raised instead.
        """
        key_lock = self._key_lock(toolchain)
        while not key_lock.acquire(timeout=settings.POLL_INTERVAL):
            if cancel is not None and cancel.is_set():
                raise StepCancelled(
                    message=f"run cancelled while waiting for toolchain '{toolchain.channel}'",
                    details={"channel": toolchain.channel},
                )
        try:
            env = self._prepared.get(toolchain)
            if env is None:
                env = self.provider.prepare(toolchain, cancel=cancel)
                self._prepared[toolchain] = env
        finally:
            key_lock.release()

        with self._lock:
            self._refs[toolchain] = self._refs.get(toolchain, 0) + 1
        try:
            # shared read-only; callers get their own copy
            yield dict(env)
        finally:
            with self._lock:
                self._refs[toolchain] -= 1
