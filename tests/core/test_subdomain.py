from conftest import CHANNEL, RECIPIENT, THREAD, USER, W1

from ensflow.core import state_machine as sm
from ensflow.core.commands import SubdomainCommand
from ensflow.core.orchestrator import handle_command, handle_transaction_response
from ensflow.gateways.registry import Ownership
from ensflow.store import flow_repo


def _sign(env, tx_hash):
    rid = env.outbox.last_tx("subdomain")["requestId"]
    return handle_transaction_response(USER, CHANNEL, rid, tx_hash)


def test_subdomain_for_owner_takes_two_steps(env, ref):
    cmd = SubdomainCommand(parent="alice.eth", label="blog", resolveAddress=W1)
    out = handle_command(ref, cmd, [W1])
    assert out["flow"] == {"type": "subdomain", "status": "step1_pending"}
    assert flow_repo.get(USER, THREAD).data["totalSteps"] == 2
    assert env.outbox.last_tx()["title"].startswith("Step 1/2")

    _sign(env, "0xs1")
    assert flow_repo.get(USER, THREAD).status == sm.STEP2_PENDING
    assert env.outbox.last_tx()["data"] == "0xstep2"

    _sign(env, "0xs2")
    assert flow_repo.get(USER, THREAD) is None
    assert "blog.alice.eth now points to" in env.outbox.messages[-1]
    assert [t["signer"] for t in env.outbox.txs] == [W1, W1]


def test_subdomain_for_someone_else_takes_three_steps(env, ref):
    cmd = SubdomainCommand(parent="alice.eth", label="Blog", resolveAddress=RECIPIENT)
    handle_command(ref, cmd, [W1])
    assert flow_repo.get(USER, THREAD).data["totalSteps"] == 3

    _sign(env, "0xs1")
    _sign(env, "0xs2")
    assert flow_repo.get(USER, THREAD).status == sm.STEP3_PENDING
    assert env.outbox.last_tx()["title"].startswith("Step 3/3")

    _sign(env, "0xs3")
    assert flow_repo.get(USER, THREAD) is None
    assert "belongs to" in env.outbox.messages[-1]


def test_rejected_later_step_reports_partial_progress(env, ref):
    handle_command(ref, SubdomainCommand(parent="alice.eth", label="blog", resolveAddress=RECIPIENT), [W1])
    _sign(env, "0xs1")
    _sign(env, "")

    assert flow_repo.get(USER, THREAD) is None
    text = env.outbox.messages[-1]
    assert "Step 2 was rejected" in text
    assert "0xs1" in text
    assert "step 3" in text


def test_parent_not_owned(env, ref):
    env.registry["verify_ownership"].side_effect = lambda name, wallets: Ownership(owned=False, actualOwner=RECIPIENT)
    out = handle_command(ref, SubdomainCommand(parent="alice.eth", label="blog", resolveAddress=W1), [W1])
    assert out["flow"] is None
    assert "None of your wallets owns alice.eth" in env.outbox.messages[-1]


def test_existing_subname(env, ref):
    env.registry["subname_exists"].return_value = True
    out = handle_command(ref, SubdomainCommand(parent="alice.eth", label="blog", resolveAddress=W1), [W1])
    assert out["flow"] is None
    assert env.outbox.messages[-1] == "blog.alice.eth already exists."


def test_bad_target_address(env, ref):
    out = handle_command(ref, SubdomainCommand(parent="alice.eth", label="blog", resolveAddress="0x1234"), [W1])
    assert out["flow"] is None
    assert env.outbox.txs == []


def test_zero_hash_counts_as_rejection(env, ref):
    handle_command(ref, SubdomainCommand(parent="alice.eth", label="blog", resolveAddress=RECIPIENT), [W1])
    assert _sign(env, "0x" + "0" * 64)["handled"] is True

    assert flow_repo.get(USER, THREAD) is None
    assert env.outbox.messages[-1] == "Step 1 was rejected. Nothing was changed on-chain."
    assert len(env.outbox.txs) == 1
