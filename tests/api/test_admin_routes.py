import pytest
from fastapi.testclient import TestClient

from conftest import CHANNEL, ETH, MAINNET, THREAD, USER, W1

from ensflow.api.admin_routes import require_admin
from ensflow.core.commands import RegisterCommand
from ensflow.core.notify import FormAnswer
from ensflow.core.orchestrator import handle_command, handle_form_response, handle_transaction_response
from ensflow.main import app
from ensflow.store import flow_repo

client = TestClient(app)


@pytest.fixture
def skip_auth():
    app.dependency_overrides[require_admin] = lambda: None
    yield
    app.dependency_overrides = {}


def test_admin_disabled_without_key():
    resp = client.get("/admin/metrics")
    assert resp.status_code == 403


def test_flow_snapshot_hides_secret(env, ref, skip_auth):
    env.balances[(W1.lower(), MAINNET)] = ETH
    handle_command(ref, RegisterCommand(name="alice", duration=1), [W1])

    resp = client.get(f"/admin/flows/{USER}/{THREAD}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["type"] == "registration"
    assert data["status"] == "initiated"
    assert data["terminal"] is False
    assert "secret" not in data["data"]["commitment"]
    assert data["data"]["commitment"]["owner"] == W1
    assert len(data["pendingRequests"]) == 1
    assert data["pendingRequests"][0].startswith("commit_confirm:")


def test_missing_flow_is_404(env, skip_auth):
    assert client.get(f"/admin/flows/{USER}/nope").status_code == 404


def test_list_and_delete(env, ref, skip_auth):
    env.balances[(W1.lower(), MAINNET)] = ETH
    handle_command(ref, RegisterCommand(name="alice", duration=1), [W1])

    flows = client.get(f"/admin/users/{USER}/flows").json()
    assert [(f["threadId"], f["status"]) for f in flows] == [(THREAD, "initiated")]

    assert client.delete(f"/admin/flows/{USER}/{THREAD}").json() == {"status": "ok", "deleted": True}
    assert flow_repo.get(USER, THREAD) is None
    assert client.delete(f"/admin/flows/{USER}/{THREAD}").json() == {"status": "ok", "deleted": False}


def test_metrics_snapshot(env, ref, skip_auth):
    env.balances[(W1.lower(), MAINNET)] = ETH
    handle_command(ref, RegisterCommand(name="alice", duration=1), [W1])

    snap = client.get("/admin/metrics").json()
    assert snap["flows"]["registration"]["started"] == 1
    assert snap["correlation_rejected"] == {"expired": 0, "forbidden": 0}
    assert snap["bridge_fill_samples"] == 0


def test_clear_all_user_flows(env, ref, skip_auth):
    env.balances[(W1.lower(), MAINNET)] = ETH
    handle_command(ref, RegisterCommand(name="alice", duration=1), [W1])

    assert client.delete(f"/admin/users/{USER}/flows").json() == {"status": "ok", "deleted": 1}
    assert flow_repo.find_active_for_user(USER) == []


def test_requests_from_cleared_flows_stay_expired(env, ref, skip_auth):
    env.balances[(W1.lower(), MAINNET)] = ETH
    handle_command(ref, RegisterCommand(name="alice", duration=1), [W1])
    rid = env.outbox.last_form("commit_confirm")["requestId"]
    handle_form_response(USER, CHANNEL, rid, FormAnswer(clicked="confirm"))
    old_commit = env.outbox.last_tx("commit")["requestId"]

    client.delete(f"/admin/users/{USER}/flows")

    handle_command(ref, RegisterCommand(name="bobby", duration=1), [W1])
    rid = env.outbox.last_form("commit_confirm")["requestId"]
    handle_form_response(USER, CHANNEL, rid, FormAnswer(clicked="confirm"))

    out = handle_transaction_response(USER, CHANNEL, old_commit, "0xold")
    assert out == {"handled": False, "reason": "expired"}
    flow = flow_repo.get(USER, THREAD)
    assert flow.data["name"] == "bobby.eth"
    assert flow.status == "step1_pending"
    assert flow.data["commitTxHash"] is None
