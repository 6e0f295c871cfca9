import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch

from conftest import CHANNEL, ETH, MAINNET, THREAD, USER, W1

from ensflow.api.auth import require_api_key
from ensflow.api.routes import to_form_answer
from ensflow.api.schemas import FormResponseRequest
from ensflow.main import app
from ensflow.settings import settings
from ensflow.store import flow_repo

client = TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def skip_auth():
    app.dependency_overrides[require_api_key] = lambda: None
    yield
    app.dependency_overrides = {}


def _command(**command):
    return {"userId": USER, "channelId": CHANNEL, "threadId": THREAD, "wallets": [W1], "command": command}


def test_health():
    assert client.get("/health").json() == {"status": "ok"}


def test_api_key_is_enforced():
    with patch.object(settings, "API_KEY", "k1"):
        resp = client.post("/commands", json=_command(action="cancel"))
        assert resp.status_code == 401


def test_register_through_http(env, skip_auth):
    env.balances[(W1.lower(), MAINNET)] = ETH

    resp = client.post("/commands", json=_command(action="register", name="alice", duration=1))
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["handled"] is True
    assert body["detail"]["flow"] == {"type": "registration", "status": "initiated"}

    rid = env.outbox.last_form("commit_confirm")["requestId"]
    resp = client.post(
        "/interactions/form",
        json={"userId": USER, "channelId": CHANNEL, "requestId": rid, "components": [{"id": "confirm"}]},
    )
    assert resp.json()["handled"] is True
    assert flow_repo.get(USER, THREAD).status == "step1_pending"

    rid = env.outbox.last_tx("commit")["requestId"]
    resp = client.post(
        "/interactions/transaction",
        json={"userId": USER, "channelId": CHANNEL, "requestId": rid, "txHash": "0xc0"},
    )
    assert resp.json()["handled"] is True
    assert flow_repo.get(USER, THREAD).status == "step1_complete"


def test_invalid_command_is_rejected(skip_auth):
    resp = client.post("/commands", json=_command(action="register", name="ab"))
    assert resp.status_code == 422


def test_unknown_request_id_is_acknowledged(env, skip_auth):
    resp = client.post(
        "/interactions/transaction",
        json={"userId": USER, "channelId": CHANNEL, "requestId": "commit:someone:t:1", "txHash": ""},
    )
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "handled": False, "detail": {"reason": "forbidden"}}


def test_unhandled_errors_still_ack(skip_auth):
    with patch("ensflow.api.routes.handle_command", side_effect=RuntimeError("boom")):
        resp = client.post("/commands", json=_command(action="cancel"))
    assert resp.status_code == 200
    assert resp.json()["status"] == "error"


def test_form_answer_mapping():
    req = FormResponseRequest(
        userId=USER,
        channelId=CHANNEL,
        requestId="duration:u:t:1",
        components=[{"id": "years", "value": "3"}, {"id": "confirm"}],
    )
    answer = to_form_answer(req)
    assert answer.clicked == "confirm"
    assert answer.values == {"years": "3"}
    assert answer.confirmed


def test_typed_duration_is_accepted(env, skip_auth):
    env.balances[(W1.lower(), MAINNET)] = ETH
    client.post("/commands", json=_command(action="register", name="alice"))
    form = env.outbox.last_form("duration")
    assert {"id": "years", "type": "textInput", "placeholder": "Other (years)"} in form["components"]

    resp = client.post(
        "/interactions/form",
        json={
            "userId": USER,
            "channelId": CHANNEL,
            "requestId": form["requestId"],
            "components": [{"id": "years", "value": "4"}],
        },
    )
    assert resp.json()["handled"] is True
    assert flow_repo.get(USER, THREAD).data["durationYears"] == 4
