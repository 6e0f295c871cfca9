import pytest
from unittest.mock import patch
from pydantic import TypeAdapter, ValidationError

from conftest import CHANNEL, ETH, MAINNET, RECIPIENT, USER, W1

from ensflow.core.commands import (
    BridgeCommand,
    Command,
    PartialCommand,
    RegisterCommand,
    TransferCommand,
)
from ensflow.core.errors import ExternalServiceError
from ensflow.core.notify import FormAnswer
from ensflow.core.orchestrator import handle_command, handle_form_response, handle_transaction_response
from ensflow.observability import metrics
from ensflow.store import flow_repo
from ensflow.store.models import ConversationRef


def test_command_union_parses_by_action():
    adapter = TypeAdapter(Command)
    cmd = adapter.validate_python({"action": "register", "name": "Alice", "duration": 2})
    assert isinstance(cmd, RegisterCommand)
    assert cmd.name == "alice.eth"

    cmd = adapter.validate_python({"action": "bridge", "amount": "0.05"})
    assert cmd.amountWei == 5 * 10**16

    with pytest.raises(ValidationError):
        adapter.validate_python({"action": "register", "name": "ab"})
    with pytest.raises(ValidationError):
        adapter.validate_python({"action": "bridge", "amount": "-1"})
    with pytest.raises(ValidationError):
        adapter.validate_python({"action": "mint", "name": "alice"})


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "-inf", "sNaN"])
def test_non_finite_bridge_amount_is_invalid(amount):
    with pytest.raises(ValidationError):
        BridgeCommand(amount=amount)


def test_new_command_supersedes_flows_in_other_threads(env, ref):
    env.balances[(W1.lower(), MAINNET)] = ETH
    handle_command(ref, RegisterCommand(name="alice", duration=1), [W1])
    old_rid = env.outbox.last_form("commit_confirm")["requestId"]

    other = ConversationRef(userId=USER, channelId=CHANNEL, threadId="thread2")
    out = handle_command(other, TransferCommand(name="bob.eth", recipient=RECIPIENT), [W1])
    assert out["flow"]["type"] == "transfer"

    assert flow_repo.get(USER, ref.threadId) is None
    assert [f.threadId for f in flow_repo.find_active_for_user(USER)] == ["thread2"]
    assert metrics.get_flow_snapshot()["flows"]["registration"]["cancelled"] == 1

    out = handle_form_response(USER, CHANNEL, old_rid, FormAnswer(clicked="confirm"))
    assert out == {"handled": False, "reason": "expired"}


def test_response_from_another_user_is_forbidden(env, ref):
    handle_command(ref, TransferCommand(name="alice.eth", recipient=RECIPIENT), [W1])
    rid = env.outbox.last_form("transfer_confirm")["requestId"]

    out = handle_form_response("0xintruder", CHANNEL, rid, FormAnswer(clicked="confirm"))
    assert out == {"handled": False, "reason": "forbidden"}
    assert flow_repo.get(USER, ref.threadId).status == "awaiting_confirmation"
    assert metrics.get_flow_snapshot()["correlation_rejected"]["forbidden"] == 1

    # the rightful user can still answer
    assert handle_form_response(USER, CHANNEL, rid, FormAnswer(clicked="confirm"))["handled"] is True


def test_form_answer_to_transaction_endpoint_is_ignored(env, ref):
    handle_command(ref, TransferCommand(name="alice.eth", recipient=RECIPIENT), [W1])
    rid = env.outbox.last_form("transfer_confirm")["requestId"]
    out = handle_transaction_response(USER, CHANNEL, rid, "0xabc")
    assert out == {"handled": False, "reason": "wrong_kind"}
    assert flow_repo.get(USER, ref.threadId).status == "awaiting_confirmation"


def test_partial_command_asks_for_missing_fields(env, ref):
    out = handle_command(ref, PartialCommand(intended="transfer", missing=["recipient"]), [W1])
    assert out == {"handled": False, "missing": ["recipient"]}
    assert "the recipient address" in env.outbox.messages[-1]
    assert flow_repo.get(USER, ref.threadId) is None


def test_cancel_with_nothing_running(env, ref):
    out = handle_command(ref, TypeAdapter(Command).validate_python({"action": "cancel"}), [W1])
    assert out == {"handled": False}
    assert "nothing in progress" in env.outbox.messages[-1]


def test_external_failure_is_reported_as_transient(env, ref):
    env.registry["check_availability"].side_effect = ExternalServiceError("registry", "timeout")
    out = handle_command(ref, RegisterCommand(name="alice", duration=1), [W1])
    assert out == {"handled": False, "error": "registry"}
    assert "try again" in env.outbox.messages[-1]
    assert flow_repo.get(USER, ref.threadId) is None


def test_standalone_bridge_command(env, ref):
    env.balances[(W1.lower(), 8453)] = ETH
    out = handle_command(ref, BridgeCommand(amount="0.01"), [W1])
    assert out["flow"] == {"type": "bridge", "status": "pending"}
    assert env.outbox.last_form()["kind"] == "bridge_confirm"


def test_transport_outage_is_only_logged(env, ref):
    with patch("ensflow.gateways.transport.send_form", side_effect=ExternalServiceError("transport", "down")):
        out = handle_command(ref, TransferCommand(name="alice.eth", recipient=RECIPIENT), [W1])
    assert out == {"handled": False, "error": "transport"}
