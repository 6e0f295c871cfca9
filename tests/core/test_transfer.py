from unittest.mock import patch

from conftest import CHANNEL, RECIPIENT, THREAD, USER, W1

from ensflow.core import state_machine as sm
from ensflow.core.commands import TransferCommand
from ensflow.core.notify import FormAnswer
from ensflow.core.orchestrator import handle_command, handle_form_response, handle_transaction_response
from ensflow.gateways.registry import Ownership
from ensflow.store import flow_repo


def _confirm(env, clicked="confirm"):
    rid = env.outbox.last_form("transfer_confirm")["requestId"]
    return handle_form_response(USER, CHANNEL, rid, FormAnswer(clicked=clicked))


def test_transfer_confirm_then_sign(env, ref):
    out = handle_command(ref, TransferCommand(name="alice", recipient=RECIPIENT), [W1])
    assert out["flow"] == {"type": "transfer", "status": "awaiting_confirmation"}
    assert "cannot be undone" in env.outbox.last_form()["subtitle"]
    assert env.outbox.txs == []

    _confirm(env)
    assert flow_repo.get(USER, THREAD).status == sm.STEP1_PENDING
    tx = env.outbox.last_tx("transfer")
    assert tx["signer"] == W1
    assert tx["to"] == "0xregistrar"
    env.registry["encode_transfer"].assert_called_once_with("alice.eth", W1, RECIPIENT, "registrar")

    rid = tx["requestId"]
    assert handle_transaction_response(USER, CHANNEL, rid, "0xt1")["handled"] is True
    assert flow_repo.get(USER, THREAD) is None
    assert "transferred" in env.outbox.messages[-1]


def test_wrapped_name_uses_name_wrapper(env, ref):
    env.registry["verify_ownership"].side_effect = lambda name, wallets: Ownership(
        owned=True, ownerWallet=W1, isWrapped=True
    )
    handle_command(ref, TransferCommand(name="alice.eth", recipient=RECIPIENT), [W1])
    assert flow_repo.get(USER, THREAD).data["contract"] == "nameWrapper"


def test_subname_uses_registry(env, ref):
    handle_command(ref, TransferCommand(name="blog.alice.eth", recipient=RECIPIENT), [W1])
    assert flow_repo.get(USER, THREAD).data["contract"] == "registry"


def test_contract_recipient_is_flagged(env, ref):
    with patch("ensflow.gateways.chain.is_contract", side_effect=lambda a, c: a == RECIPIENT):
        handle_command(ref, TransferCommand(name="alice.eth", recipient=RECIPIENT), [W1])
    assert flow_repo.get(USER, THREAD).data["recipientIsContract"] is True
    assert "smart contract" in env.outbox.last_form()["subtitle"]


def test_cancel_button_cancels(env, ref):
    handle_command(ref, TransferCommand(name="alice.eth", recipient=RECIPIENT), [W1])
    out = _confirm(env, "cancel")
    assert out == {"handled": True, "type": "transfer"}
    assert flow_repo.get(USER, THREAD) is None
    env.registry["encode_transfer"].assert_not_called()


def test_transfer_to_current_owner_is_refused(env, ref):
    out = handle_command(ref, TransferCommand(name="alice.eth", recipient=W1), [W1])
    assert out["flow"] is None
    assert "already owns" in env.outbox.messages[-1]


def test_rejected_transfer_fails(env, ref):
    handle_command(ref, TransferCommand(name="alice.eth", recipient=RECIPIENT), [W1])
    _confirm(env)
    rid = env.outbox.last_tx("transfer")["requestId"]
    handle_transaction_response(USER, CHANNEL, rid, "")
    assert flow_repo.get(USER, THREAD) is None
    assert "was not moved" in env.outbox.messages[-1]
