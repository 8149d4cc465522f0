from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from crossci.dsl import job, matrix, on, sh, wf
from crossci.runner import PipelineRun
from crossci.webhook import RunRecord, RunRegistry, create_app

PUSH = {"kind": "push", "ref": "refs/heads/main", "sha": "abc123", "repository": "acme/sx127x"}


def definition(cmd="true"):
    return wf(
        job("build", sh("Cargo build", cmd), matrix=[matrix("target", ["thumbv6m-none-eabi", "thumbv7em-none-eabi"])]),
        job("doc", sh("Cargo doc", cmd)),
        triggers=[on("push"), on("pull_request"), on("schedule", cron="13 3 * * *", enabled=False)],
    )


@pytest.fixture
def client_for(toolchains, secrets, tmp_path):
    def _client(cmd="true", **kwargs):
        app = create_app(definition(cmd), repo_root=tmp_path, toolchains=toolchains, secrets=secrets, **kwargs)
        return TestClient(app)
    return _client


def wait_done(client, run_id, timeout=30):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/runs/{run_id}").json()
        if body["status"] not in ("queued", "running"):
            return body
        time.sleep(0.1)
    raise AssertionError(f"run {run_id} did not finish")


def test_push_runs_to_a_verdict(client_for):
    client = client_for()
    resp = client.post("/events", params={"wait": "true"}, json=PUSH)

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "succeeded"
    assert body["params"]["branch"] == "main"
    assert body["jobs"] == ["build[thumbv6m-none-eabi]", "build[thumbv7em-none-eabi]", "doc"]
    assert body["verdict"]["succeeded"] is True


def test_failed_run_reports_failing_jobs(client_for):
    client = client_for("exit 2")
    resp = client.post("/events", json=PUSH)
    body = wait_done(client, resp.json()["run_id"])

    assert body["status"] == "failed"
    assert body["verdict"]["failing_jobs"] == ["build[thumbv6m-none-eabi]", "build[thumbv7em-none-eabi]", "doc"]


def test_inert_schedule_is_skipped(client_for):
    client = client_for()
    body = client.post("/events", json={"kind": "schedule"}).json()

    assert body["status"] == "skipped"
    assert body["verdict"] is None
    assert client.get(f"/runs/{body['run_id']}").json()["status"] == "skipped"


def test_malformed_event_is_rejected(client_for):
    client = client_for()
    resp = client.post("/events", json={"kind": "push", "branch": "main"})
    assert resp.status_code == 422


def test_unknown_run(client_for):
    assert client_for().get("/runs/nope").status_code == 404


def test_newer_push_supersedes_and_cancel_endpoint(client_for):
    client = client_for("sleep 30", cancel_superseded=True)

    first = client.post("/events", json=PUSH).json()
    time.sleep(0.3)
    second = client.post("/events", json={**PUSH, "sha": "def456"}).json()

    assert wait_done(client, first["run_id"])["status"] == "cancelled"

    assert client.post(f"/runs/{second['run_id']}/cancel").status_code == 200
    assert wait_done(client, second["run_id"])["status"] == "cancelled"
    assert client.post(f"/runs/{second['run_id']}/cancel").status_code == 409


def test_oldest_finished_runs_are_forgotten(client_for):
    client = client_for(max_runs=2)
    ids = [
        client.post("/events", params={"wait": "true"}, json={**PUSH, "ref": f"refs/heads/b{i}"}).json()["run_id"]
        for i in range(3)
    ]

    assert client.get(f"/runs/{ids[0]}").status_code == 404
    assert [client.get(f"/runs/{i}").json()["status"] for i in ids[1:]] == ["succeeded", "succeeded"]


def test_runs_in_flight_are_never_forgotten(toolchains, secrets, push_event):
    def record(run_id):
        return RunRecord(run_id=run_id, run=PipelineRun(definition(), push_event, toolchains=toolchains, secrets=secrets))

    registry = RunRegistry(max_runs=1)
    records = [record(str(i)) for i in range(3)]
    for rec in records:
        registry.add(rec, cancel_superseded=False)
    assert len(registry) == 3

    records[0].done.set()
    records[1].done.set()
    registry.add(record("3"), cancel_superseded=False)

    assert len(registry) == 2
    assert registry.get("2") is records[2]
