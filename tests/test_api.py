from __future__ import annotations

import json

import httpx
import pytest

from app.services.runs_service import RunsService, set_runs_service
from manifest.loader import load_manifest

OUTPUT = "bb43c46244cef15f2451a446cea011fc1a2eddfe"


@pytest.fixture
def service(manifest_doc, chain, rpc, session_store):
    svc = RunsService(load_manifest(manifest_doc), chain, rpc=rpc, session=session_store)
    set_runs_service(svc)
    return svc


def _open(client, action_id="send", **prefilled):
    resp = client.post("/v1/runs", json={"actionId": action_id, "prefilled": prefilled, "account": {"address": "abc"}})
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_list_actions(service, client):
    ids = [a["id"] for a in client.get("/v1/actions").json()]
    assert ids == ["send", "stake", "pause"]

    quick = client.get("/v1/actions", params={"quick": "true"}).json()
    assert [a["id"] for a in quick] == ["stake", "send"]


def test_open_run_returns_view(service, client):
    view = _open(client)

    assert view["stage"] == "form"
    assert view["actionId"] == "send"
    assert view["fee"]["amount"] == "10000"
    assert [f["name"] for f in view["fields"]] == ["output", "amount", "memo"]


def test_unknown_action_and_run(service, client):
    assert client.post("/v1/runs", json={"actionId": "nope"}).status_code == 404
    assert client.get("/v1/runs/does-not-exist").status_code == 404


def test_validation_errors_keep_form_stage(service, client):
    run_id = _open(client)["runId"]
    client.post(f"/v1/runs/{run_id}/form", json={"values": {"output": OUTPUT, "amount": "0"}})

    view = client.post(f"/v1/runs/{run_id}/continue").json()
    assert view["stage"] == "form"
    assert view["errors"] == {"amount": "Must be > 0"}


def test_unlock_resumes_suspended_run_once(service, client, recorder):
    recorder.routes["POST /v1/admin/tx-send"] = {"hash": "0x123"}
    run_id = _open(client, output=OUTPUT, amount="1")["runId"]

    view = client.post(f"/v1/runs/{run_id}/continue").json()
    assert view["stage"] == "form"
    assert view["unlockRequested"] is True

    resp = client.post("/v1/session/unlock", json={"address": "abc", "password": "pw"})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["unlocked"] is True
    assert body["remainingSeconds"] == 600
    assert body["resumedRuns"] == [run_id]

    view = client.get(f"/v1/runs/{run_id}").json()
    assert view["stage"] == "result"
    assert view["executions"] == 1
    assert view["result"]["tx_hash"] == "0x123"

    client.post("/v1/session/unlock", json={"address": "abc", "password": "pw"})
    sent = [r for r in recorder.requests if r.url.path == "/v1/admin/tx-send"]
    assert len(sent) == 1
    assert json.loads(sent[0].content)["password"] == "pw"


def test_illegal_transitions_return_409(service, client, recorder):
    recorder.routes["POST /v1/tx/pause"] = {"ok": True}
    run_id = _open(client, "pause", reason="x")["runId"]

    assert client.post(f"/v1/runs/{run_id}/back").status_code == 409
    assert client.post(f"/v1/runs/{run_id}/confirm").status_code == 409

    view = client.post(f"/v1/runs/{run_id}/continue").json()
    assert view["stage"] == "result"
    assert client.post(f"/v1/runs/{run_id}/continue").status_code == 409

    view = client.post(f"/v1/runs/{run_id}/done").json()
    assert view["stage"] == "form"
    assert view["result"] is None
    assert view["executions"] == 0
    assert view["runId"] == run_id


def test_remote_failure_while_opening_returns_502(manifest_doc, chain_doc, rpc, recorder, session_store, client):
    from manifest.types import ChainConfig

    manifest_doc["actions"][2]["ds"] = {"height": {}, "__options": {"critical": ["height"]}}
    recorder.routes["/v1/query/height"] = httpx.Response(500)
    set_runs_service(
        RunsService(load_manifest(manifest_doc), ChainConfig.model_validate(chain_doc), rpc=rpc, session=session_store)
    )

    assert client.post("/v1/runs", json={"actionId": "pause"}).status_code == 502


def test_session_lock_and_activity(service, client, session_store):
    assert client.get("/v1/session").json()["unlocked"] is False
    assert client.post("/v1/session/unlock", json={"address": "abc", "password": ""}).status_code == 422

    client.post("/v1/session/unlock", json={"address": "abc", "password": "pw", "ttlSeconds": 30})
    assert client.get("/v1/session").json()["remainingSeconds"] == 30

    _open(client, "pause")
    assert client.post("/v1/session/activity", json={"kind": "click"}).json()["renewed"] is True
    assert client.get("/v1/session").json()["remainingSeconds"] == 600

    assert client.post("/v1/session/lock").json()["unlocked"] is False


def test_run_id_header_is_accepted(service, client):
    run_id = _open(client, "pause")["runId"]
    resp = client.get(f"/v1/runs/{run_id}", headers={"X-Run-Id": run_id})
    assert resp.status_code == 200
    assert client.delete(f"/v1/runs/{run_id}").json() == {"ok": True, "runId": run_id}
    assert client.get(f"/v1/runs/{run_id}").status_code == 404
