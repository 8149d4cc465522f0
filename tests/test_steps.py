from __future__ import annotations

from crossci.steps import cargo_build, cargo_clippy, cargo_doc, cargo_fmt_check, cargo_test


def test_cargo_commands():
    assert cargo_build(target="thumbv6m-none-eabi").run == "cargo build --target thumbv6m-none-eabi"
    assert cargo_test(args="--lib").run == "cargo test --lib"
    assert cargo_fmt_check(channel="nightly").run == "cargo +nightly fmt -- --check"
    assert cargo_doc().run == "cargo doc --all-features"
    assert cargo_doc(all_features=False).run == "cargo doc"


def test_clippy_denies_warnings_and_binds_token():
    step = cargo_clippy(token_secret="GITHUB_TOKEN")
    assert step.run == "cargo clippy -- -D warnings"
    assert step.secrets == {"GITHUB_TOKEN": "GITHUB_TOKEN"}
    assert cargo_clippy(deny_warnings=False).secrets == {}
