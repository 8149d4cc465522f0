from __future__ import annotations

import threading
from pathlib import Path

import pytest

from crossci.errors import ToolchainUnavailable
from crossci.model import EventDescriptor
from crossci.secret_store import MappingSecretStore
from crossci.toolchain import ToolchainPool
from crossci.ui.console import Console, set_console

ROOT = Path(__file__).resolve().parents[1]
WORKFLOW = ROOT / "crossci_workflow.py"

SECRET = "s3cr3t-token-value"


class FakeProvider:
    """Toolchain provider that installs nothing and records what was asked."""

    def __init__(self, unavailable=(), gate=None):
        self.unavailable = set(unavailable)
        self.gate = gate
        self.prepared = []
        self._lock = threading.Lock()

    def prepare(self, toolchain, cancel=None):
        with self._lock:
            self.prepared.append(toolchain)
        if self.gate is not None:
            self.gate.wait(timeout=30)
        if toolchain.channel in self.unavailable:
            raise ToolchainUnavailable(
                message=f"toolchain '{toolchain.channel}' cannot be installed",
                details={"hint": "offline"},
            )
        return {"RUSTUP_TOOLCHAIN": toolchain.channel}


def slow_rustup(tmp_path, seconds=12):
    """An executable that stands in for rustup and just sleeps."""
    script = tmp_path / "rustup"
    script.write_text(f"#!/bin/sh\nsleep {seconds}\n", encoding="utf-8")
    script.chmod(0o755)
    return str(script)


@pytest.fixture(autouse=True)
def _console():
    console = Console()
    set_console(console)
    return console


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def toolchains(provider):
    return ToolchainPool(provider)


@pytest.fixture
def secrets():
    return MappingSecretStore({"GITHUB_TOKEN": SECRET})


@pytest.fixture
def push_event():
    return EventDescriptor(kind="push", branch="main", commit="abc123", repository="acme/sx127x")
