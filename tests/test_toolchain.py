from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from crossci.errors import StepCancelled, ToolchainUnavailable
from crossci.model import Toolchain
from crossci.toolchain import PreinstalledProvider, RustupProvider, ToolchainPool

from tests.conftest import FakeProvider, slow_rustup


def test_rustup_install_command():
    provider = RustupProvider("rustup")
    toolchain = Toolchain("nightly", ("rustfmt", "clippy"), ("thumbv6m-none-eabi",))
    assert provider.install_command(toolchain) == [
        "rustup", "toolchain", "install", "nightly", "--profile", "minimal",
        "--component", "rustfmt", "--component", "clippy",
        "--target", "thumbv6m-none-eabi",
    ]


def test_missing_rustup_is_unavailable(tmp_path):
    provider = RustupProvider(str(tmp_path / "no-rustup"))
    with pytest.raises(ToolchainUnavailable) as exc:
        provider.prepare(Toolchain("stable"))
    assert "hint" in exc.value.details


def test_failing_install_is_unavailable():
    # `false` ignores its arguments and exits 1
    with pytest.raises(ToolchainUnavailable) as exc:
        RustupProvider("false").prepare(Toolchain("stable", targets=("thumbv7em-none-eabi",)))
    assert exc.value.details["targets"] == "thumbv7em-none-eabi"


def test_preinstalled_only_selects_the_channel():
    assert PreinstalledProvider().prepare(Toolchain("nightly")) == {"RUSTUP_TOOLCHAIN": "nightly"}


def test_identical_toolchains_are_prepared_once_and_shared():
    provider = FakeProvider()
    pool = ToolchainPool(provider)
    toolchain = Toolchain("stable", targets=("thumbv6m-none-eabi",))
    inside = threading.Barrier(4, timeout=5)

    def use():
        with pool.acquire(toolchain) as env:
            inside.wait()
            return env

    with ThreadPoolExecutor(max_workers=4) as ex:
        envs = list(ex.map(lambda _: use(), range(4)))

    assert provider.prepared == [toolchain]
    assert all(env == {"RUSTUP_TOOLCHAIN": "stable"} for env in envs)
    assert pool.refcount(toolchain) == 0


def test_failed_preparation_is_retried():
    provider = FakeProvider(unavailable={"nightly"})
    pool = ToolchainPool(provider)
    for _ in range(2):
        with pytest.raises(ToolchainUnavailable):
            with pool.acquire(Toolchain("nightly")):
                pass
    assert len(provider.prepared) == 2
    assert pool.refcount(Toolchain("nightly")) == 0


def test_cancel_interrupts_a_running_install(tmp_path):
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(StepCancelled):
            RustupProvider(slow_rustup(tmp_path)).prepare(Toolchain("nightly"), cancel=cancel)
    finally:
        timer.cancel()
    assert time.monotonic() - started < 8


def test_install_past_its_timeout_is_unavailable(tmp_path):
    with pytest.raises(ToolchainUnavailable) as exc:
        RustupProvider(slow_rustup(tmp_path), timeout=0.5).prepare(Toolchain("stable"))
    assert "timed out" in exc.value.message


def test_cancel_stops_waiting_for_another_preparation():
    gate = threading.Event()
    provider = FakeProvider(gate=gate)
    pool = ToolchainPool(provider)
    toolchain = Toolchain("stable")

    def first():
        with pool.acquire(toolchain):
            pass

    holder = threading.Thread(target=first)
    holder.start()
    while not provider.prepared:
        time.sleep(0.01)
    try:
        cancel = threading.Event()
        cancel.set()
        started = time.monotonic()
        with pytest.raises(StepCancelled):
            with pool.acquire(toolchain, cancel=cancel):
                pass
        assert time.monotonic() - started < 5
    finally:
        gate.set()
        holder.join()
    assert pool.refcount(toolchain) == 0
