from conftest import BASE, CHANNEL, ETH, MAINNET, THREAD, USER, W1

from ensflow.core import renew
from ensflow.core import state_machine as sm
from ensflow.core.bridge import poll_bridge_status
from ensflow.core.commands import RenewCommand
from ensflow.core.notify import FormAnswer
from ensflow.core.orchestrator import handle_command, handle_form_response, handle_transaction_response
from ensflow.gateways.bridge_api import DepositStatus
from ensflow.store import flow_repo

VALUE = 55 * 10**14


def _answer(env, kind, clicked="confirm"):
    rid = env.outbox.last_form(kind)["requestId"]
    return handle_form_response(USER, CHANNEL, rid, FormAnswer(clicked=clicked))


def test_direct_renewal(env, ref):
    env.balances[(W1.lower(), MAINNET)] = ETH
    out = handle_command(ref, RenewCommand(name="alice", duration=2), [W1])
    assert out["flow"] == {"type": "renew", "status": "awaiting_confirmation"}
    form = env.outbox.last_form("renew_confirm")
    assert "2027-01-15 -> 2028-01-15" in form["subtitle"]

    _answer(env, "renew_confirm")
    tx = env.outbox.last_tx("renew")
    assert tx["valueWei"] == VALUE
    assert tx["signer"] == W1
    env.registry["encode_renew"].assert_called_once_with("alice.eth", 2 * 31_536_000, VALUE, False)

    handle_transaction_response(USER, CHANNEL, tx["requestId"], "0xrenew")
    assert flow_repo.get(USER, THREAD) is None
    assert "renewed until" in env.outbox.messages[-1]


def test_renewal_asks_duration(env, ref):
    env.balances[(W1.lower(), MAINNET)] = ETH
    handle_command(ref, RenewCommand(name="alice.eth"), [W1])
    assert flow_repo.get(USER, THREAD).status == sm.AWAITING_DURATION

    _answer(env, "renew_duration", "years:5")
    flow = flow_repo.get(USER, THREAD)
    assert flow.status == sm.AWAITING_CONFIRMATION
    assert flow.data["durationYears"] == 5
    assert env.outbox.last_form()["kind"] == "renew_confirm"


def test_out_of_range_duration_asks_again(env, ref):
    handle_command(ref, RenewCommand(name="alice.eth"), [W1])
    _answer(env, "renew_duration", "years:42")
    assert flow_repo.get(USER, THREAD).status == sm.AWAITING_DURATION
    assert len([f for f in env.outbox.forms if f["kind"] == "renew_duration"]) == 2


def test_renewal_bridges_then_signs(env, ref):
    env.balances[(W1.lower(), BASE)] = ETH
    handle_command(ref, RenewCommand(name="alice.eth", duration=1), [W1])
    flow = flow_repo.get(USER, THREAD)
    assert flow.type == sm.BRIDGE
    assert flow.data["nextAction"] == "continue_renewal"
    assert flow.data["requiredWei"] == VALUE

    _answer(env, "bridge_confirm")
    rid = env.outbox.last_tx("bridge")["requestId"]
    handle_transaction_response(USER, CHANNEL, rid, "0xdeposit")

    # filled, but not yet visible on mainnet
    env.bridge["get_deposit_status"].return_value = DepositStatus(status="filled", fillTxHash="0xfill")
    poll_bridge_status(USER, THREAD)
    assert env.outbox.last_form()["kind"] == "continue_bridge"
    assert flow_repo.get(USER, THREAD).status == sm.BRIDGING

    env.balances[(W1.lower(), MAINNET)] = VALUE
    _answer(env, "continue_bridge", "continue")
    flow = flow_repo.get(USER, THREAD)
    assert flow.type == sm.RENEW
    assert flow.status == sm.STEP1_PENDING
    assert env.outbox.last_tx()["kind"] == "renew"


def test_unfunded_renewal(env, ref):
    out = handle_command(ref, RenewCommand(name="alice.eth", duration=1), [W1])
    assert out["flow"] is None
    assert flow_repo.get(USER, THREAD) is None
    assert "Not enough ETH to renew" in env.outbox.messages[-1]


def test_name_not_owned(env, ref):
    env.registry["quote_renewal"].side_effect = None
    env.registry["quote_renewal"].return_value = None
    out = handle_command(ref, RenewCommand(name="alice.eth", duration=1), [W1])
    assert out["flow"] is None
    assert "None of your wallets owns alice.eth" in env.outbox.messages[-1]


def test_date_rendering():
    assert renew._date(0) == "unknown"
    assert renew._date(1_800_000_000) == "2027-01-15"
