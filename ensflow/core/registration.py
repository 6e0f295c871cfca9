"""
Registration Orchestrator.

Commit/reveal: a commitment hash is committed on-chain, the registry makes
it mature for at least a minute, then `register` reveals the secret. The
commitment binds the owner, so it is always computed for the wallet that
will sign `register`.

awaiting_wallet -> initiated -> step1_pending -> step1_complete
    -> step2_pending -> complete      (failed from any non-terminal status)
"""
import secrets
from dataclasses import asdict
from typing import List, Optional

import ensflow.gateways.chain as chain
import ensflow.gateways.registry as registry
import ensflow.queue.scheduler as scheduler
from ensflow.core import correlator, funding, lifecycle
from ensflow.core import state_machine as sm
from ensflow.core.bridge import start_bridge
from ensflow.core.errors import ExternalServiceError, SignerMismatch
from ensflow.core.notify import FormAnswer, ask, button, confirm_buttons, request_signature, say, text_input
from ensflow.observability import metrics
from ensflow.observability.logging import log
from ensflow.settings import settings
from ensflow.store import flow_repo
from ensflow.store.models import (
    NEXT_CONTINUE_REGISTRATION,
    BridgeData,
    Commitment,
    ConversationRef,
    Flow,
    RegistrationCosts,
    RegistrationData,
)
from ensflow.utils.time import elapsed_sec, now_ms
from ensflow.utils.units import SECONDS_PER_YEAR, format_eth, same_address, short_address

DURATION_CHOICES = (1, 2, 3, 5)


def valid_years(years) -> Optional[int]:
    try:
        y = int(years)
    except (TypeError, ValueError):
        return None
    if settings.MIN_DURATION_YEARS <= y <= settings.MAX_DURATION_YEARS:
        return y
    return None


def _load(user_id: str, thread_id: str, status: str) -> Optional[Flow]:
    flow = flow_repo.get(user_id, thread_id)
    if flow is None or flow.type != sm.REGISTRATION or flow.status != status:
        log(
            event="registration_stale",
            userId=user_id,
            threadId=thread_id,
            expected=status,
            found=(flow.status if flow else None),
        )
        return None
    return flow


def _ask_duration(ref: ConversationRef, name: str) -> None:
    ask(
        ref,
        correlator.DURATION,
        f"How long do you want to register {name}?",
        [button(f"years:{y}", f"{y} year" + ("s" if y > 1 else "")) for y in DURATION_CHOICES]
        + [text_input("years", "Other (years)"), button("cancel", "Cancel")],
        subtitle=f"Between {settings.MIN_DURATION_YEARS} and {settings.MAX_DURATION_YEARS} years.",
    )


def handle_register(ref: ConversationRef, name: str, duration_years: Optional[int], wallets: List[str]) -> Optional[Flow]:
    avail = registry.check_availability(name)
    if not avail.available:
        owner = f" (owner: {short_address(avail.owner)})" if avail.owner else ""
        say(ref, f"{name} is already registered{owner}.")
        return None

    data = RegistrationData(name=name, wallets=list(wallets or []))
    flow = flow_repo.create(
        Flow(
            userId=ref.userId,
            threadId=ref.threadId,
            channelId=ref.channelId,
            type=sm.REGISTRATION,
            status=sm.AWAITING_WALLET,
            data=data.to_dict(),
        )
    )
    metrics.increment_flow(sm.REGISTRATION, "started")

    years = valid_years(duration_years)
    if years is None:
        _ask_duration(ref, name)
        return flow

    flow = flow_repo.update_data(ref.userId, ref.threadId, {"durationYears": years})
    return _plan(flow)


def handle_duration(req: correlator.ResolvedRequest, answer: FormAnswer) -> bool:
    flow = _load(req.userId, req.threadId, sm.AWAITING_WALLET)
    if flow is None:
        return False
    raw = None
    if answer.clicked and answer.clicked.startswith("years:"):
        raw = answer.clicked.split(":", 1)[1]
    elif answer.values.get("years"):
        raw = answer.values["years"]
    years = valid_years(raw)
    if years is None:
        say(flow.ref, f"Pick a duration between {settings.MIN_DURATION_YEARS} and {settings.MAX_DURATION_YEARS} years.")
        _ask_duration(flow.ref, RegistrationData.from_dict(flow.data).name)
        return True
    flow = flow_repo.update_data(req.userId, req.threadId, {"durationYears": years})
    _plan(flow)
    return True


def _plan(flow: Flow) -> Optional[Flow]:
    reg = RegistrationData.from_dict(flow.data)
    ref = flow.ref

    eoas = funding.filter_eoas(reg.wallets)
    if not eoas:
        lifecycle.finish(
            flow, sm.FAILED, "failed",
            "I couldn't find a wallet that can sign transactions. Link a regular wallet and try again.",
        )
        return None

    # placeholder estimate; recomputed for the owner once a wallet is chosen
    cost = registry.estimate_registration_cost(reg.name, reg.durationYears)
    decision = funding.plan_funding(cost.grandTotalWei, eoas)

    flow = flow_repo.update_data(
        ref.userId,
        ref.threadId,
        {
            "domainPriceWei": cost.domainPriceWei,
            "grandTotalWei": cost.grandTotalWei,
            "walletCandidates": [asdict(w.candidate()) for w in decision.wallets],
        },
    )

    if decision.action == funding.PROCEED:
        return _fund_with(flow, decision.selected.address)
    if decision.action == funding.BRIDGE:
        return _hand_off_to_bridge(flow, decision.selected.address)
    if decision.action == funding.SELECT_WALLET:
        _ask_wallet(flow, decision.options, decision.requiredWei)
        return flow

    lifecycle.finish(flow, sm.FAILED, "failed", _insufficient_text(reg.name, cost.grandTotalWei, decision.wallets))
    return None


def _insufficient_text(name: str, required_wei: int, wallets: List[funding.WalletBalance]) -> str:
    lines = [f"Not enough ETH to register {name}: {format_eth(required_wei)} ETH needed on mainnet."]
    for w in wallets:
        lines.append(
            f"- {short_address(w.address)}: {format_eth(w.primaryWei)} ETH on mainnet, "
            f"{format_eth(w.sourceWei)} ETH on Base (short {format_eth(w.shortfallWei)} ETH)"
        )
    return "\n".join(lines)


def _ask_wallet(flow: Flow, options, required_wei: int) -> None:
    """`options` are WalletBalance or stored WalletCandidate entries."""
    components = []
    for w in options:
        how = "pays directly" if w.funding == funding.DIRECT else "bridge from Base"
        components.append(
            button(f"wallet:{w.address}", f"{short_address(w.address)} ({format_eth(w.primaryWei)} ETH, {how})")
        )
    components.append(button("cancel", "Cancel"))
    ask(
        flow.ref,
        correlator.WALLET_SELECT,
        "Which wallet should pay?",
        components,
        subtitle=f"Total: ~{format_eth(required_wei)} ETH",
    )


def handle_wallet_selection(req: correlator.ResolvedRequest, answer: FormAnswer) -> bool:
    flow = _load(req.userId, req.threadId, sm.AWAITING_WALLET)
    if flow is None or not (answer.clicked or "").startswith("wallet:"):
        return False
    reg = RegistrationData.from_dict(flow.data)
    address = answer.clicked.split(":", 1)[1]

    candidate = next((c for c in reg.walletCandidates if same_address(c.address, address)), None)
    if candidate is None or candidate.funding == funding.INSUFFICIENT:
        log(event="wallet_selection_rejected", userId=req.userId, threadId=req.threadId, wallet=address)
        say(flow.ref, "That wallet wasn't one of the options. Pick one of the listed wallets.")
        options = [c for c in reg.walletCandidates if c.funding != funding.INSUFFICIENT]
        _ask_wallet(flow, options, reg.grandTotalWei)
        return True

    # balances are re-read for the chosen wallet, never taken from the prompt snapshot
    cost = registry.estimate_registration_cost(reg.name, reg.durationYears, owner=candidate.address)
    balance = funding.check_wallet(candidate.address, cost.grandTotalWei)
    log(event="wallet_selected", userId=req.userId, threadId=req.threadId, wallet=candidate.address, funding=balance.funding)

    if balance.funding == funding.DIRECT:
        _fund_with(flow, candidate.address, cost)
    elif balance.funding == funding.BRIDGEABLE:
        _hand_off_to_bridge(flow, candidate.address, cost)
    else:
        lifecycle.finish(flow, sm.FAILED, "failed", _insufficient_text(reg.name, cost.grandTotalWei, [balance]))
    return True


def _prepare(reg: RegistrationData, owner: str, cost: Optional[registry.RegistrationCost] = None) -> dict:
    """Cost and commitment for `owner`; returned as a payload patch."""
    if cost is None:
        cost = registry.estimate_registration_cost(reg.name, reg.durationYears, owner=owner)
    duration_sec = int(reg.durationYears) * SECONDS_PER_YEAR
    secret = "0x" + secrets.token_hex(32)
    commitment_hash = registry.make_commitment(reg.name, owner, duration_sec, secret)
    commitment = Commitment(
        name=reg.name,
        owner=owner,
        durationSec=duration_sec,
        secret=secret,
        commitment=commitment_hash,
        domainPriceWei=cost.domainPriceWei,
    )
    return {
        "selectedWallet": owner,
        "commitment": asdict(commitment),
        "costs": asdict(
            RegistrationCosts(
                commitGasWei=cost.commitGasWei,
                registerGasWei=cost.registerGasWei,
                isRegisterEstimate=cost.isRegisterEstimate,
            )
        ),
        "domainPriceWei": cost.domainPriceWei,
        "grandTotalWei": cost.grandTotalWei,
        "commitTxHash": None,
        "commitSubmittedAtMs": 0,
        "commitUnminedAtMs": 0,
        "commitConfirmedAtMs": 0,
    }


def _fund_with(flow: Flow, owner: str, cost: Optional[registry.RegistrationCost] = None) -> Flow:
    reg = RegistrationData.from_dict(flow.data)
    flow_repo.update_data(flow.userId, flow.threadId, _prepare(reg, owner, cost))
    flow = flow_repo.update_status(flow.userId, flow.threadId, sm.INITIATED)
    _ask_commit_confirm(flow)
    return flow


def _ask_commit_confirm(flow: Flow) -> None:
    reg = RegistrationData.from_dict(flow.data)
    gas_note = " (register gas is an estimate)" if reg.costs.isRegisterEstimate else ""
    ask(
        flow.ref,
        correlator.COMMIT_CONFIRM,
        f"Register {reg.name} for {reg.durationYears} year" + ("s" if reg.durationYears != 1 else ""),
        confirm_buttons("Start (step 1 of 2)", "Cancel"),
        step=1,
        subtitle=(
            f"Price {format_eth(reg.domainPriceWei)} ETH + gas, total ~{format_eth(reg.grandTotalWei)} ETH{gas_note}. "
            f"Paid by {short_address(reg.selectedWallet)}. Two transactions about a minute apart."
        ),
    )


def _hand_off_to_bridge(flow: Flow, owner: str, cost: Optional[registry.RegistrationCost] = None) -> Optional[Flow]:
    reg = RegistrationData.from_dict(flow.data)
    patch = _prepare(reg, owner, cost)
    parent = dict(reg.to_dict(), **patch)
    say(flow.ref, f"{short_address(owner)} needs ETH on mainnet for {reg.name}; bridging from Base first.")
    bridge_flow = start_bridge(flow.ref, owner, patch["grandTotalWei"], NEXT_CONTINUE_REGISTRATION, parent)
    if bridge_flow is None:
        metrics.increment_flow(sm.REGISTRATION, "failed")
    return bridge_flow


def resume_after_bridge(bridge_flow: Flow) -> Optional[Flow]:
    """Pick the registration up at the commit step; duration and wallet were settled before bridging."""
    bridge = BridgeData.from_dict(bridge_flow.data)
    reg = RegistrationData.from_dict(bridge.parentData)
    ref = bridge_flow.ref

    avail = registry.check_availability(reg.name)
    if not avail.available:
        lifecycle.discard(ref.userId, ref.threadId)
        metrics.increment_flow(sm.REGISTRATION, "failed")
        say(ref, f"Bridge complete, but {reg.name} was registered by someone else in the meantime.")
        return None

    if reg.commitment is None or not same_address(reg.commitment.owner, reg.selectedWallet):
        reg = RegistrationData.from_dict(dict(reg.to_dict(), **_prepare(reg, reg.selectedWallet)))

    flow = flow_repo.replace(
        ref.userId,
        ref.threadId,
        Flow(
            userId=ref.userId,
            threadId=ref.threadId,
            channelId=ref.channelId,
            type=sm.REGISTRATION,
            status=sm.INITIATED,
            data=reg.to_dict(),
        ),
    )
    say(ref, f"Funds arrived. Continuing the registration of {reg.name}.")
    return _request_commit(flow)


def handle_commit_confirm(req: correlator.ResolvedRequest, answer: FormAnswer) -> bool:
    flow = _load(req.userId, req.threadId, sm.INITIATED)
    if flow is None or not answer.confirmed:
        return False
    _request_commit(flow)
    return True


def _request_commit(flow: Flow) -> Flow:
    reg = RegistrationData.from_dict(flow.data)
    call = registry.encode_commit(reg.commitment.commitment)
    flow = flow_repo.update_status(flow.userId, flow.threadId, sm.STEP1_PENDING, expected=sm.INITIATED)
    flow = flow_repo.update_data(flow.userId, flow.threadId, {"currentStep": 1})
    request_signature(
        flow.ref,
        correlator.COMMIT,
        f"Step 1/2: commit {reg.name}",
        settings.PRIMARY_CHAIN_ID,
        call,
        signer=reg.selectedWallet,
        step=1,
    )
    return flow


def handle_commit_tx(req: correlator.ResolvedRequest, tx_hash: str) -> bool:
    flow = _load(req.userId, req.threadId, sm.STEP1_PENDING)
    if flow is None:
        return False
    reg = RegistrationData.from_dict(flow.data)

    if not tx_hash:
        lifecycle.finish(
            flow, sm.FAILED, "failed",
            f"Commit transaction rejected. Nothing happened on-chain; run the registration of {reg.name} again when ready.",
        )
        return True

    flow_repo.update_data(req.userId, req.threadId, {"commitTxHash": tx_hash, "commitSubmittedAtMs": now_ms()})
    flow = flow_repo.update_status(req.userId, req.threadId, sm.STEP1_COMPLETE, expected=sm.STEP1_PENDING)
    say(
        flow.ref,
        f"Commit submitted ({tx_hash}). The registry needs about a minute before step 2; "
        f"I'll prompt you when it's ready.",
    )
    scheduler.schedule(settings.COMMIT_WAIT_SEC, scheduler.COMMIT_WAIT_JOB, req.userId, req.threadId)
    return True


def _commit_expired(reg: RegistrationData) -> bool:
    if not reg.commitSubmittedAtMs:
        return False
    return now_ms() - int(reg.commitSubmittedAtMs) > int(settings.COMMIT_MAX_AGE_SEC) * 1000


def _restart_commitment(flow: Flow) -> Flow:
    reg = RegistrationData.from_dict(flow.data)
    log(event="commitment_expired", userId=flow.userId, threadId=flow.threadId, name=reg.name)
    flow = flow_repo.update_status(flow.userId, flow.threadId, sm.INITIATED)
    flow = flow_repo.update_data(flow.userId, flow.threadId, dict(_prepare(reg, reg.selectedWallet), currentStep=0))
    say(flow.ref, f"The commitment for {reg.name} expired before step 2. Starting again from step 1.")
    _ask_commit_confirm(flow)
    return flow


def on_commit_wait_elapsed(user_id: str, thread_id: str) -> None:
    flow = _load(user_id, thread_id, sm.STEP1_COMPLETE)
    if flow is None:
        return
    reg = RegistrationData.from_dict(flow.data)
    if reg.commitConfirmedAtMs:
        # already prompted for step 2
        return
    if _commit_expired(reg):
        _restart_commitment(flow)
        return

    try:
        receipt = chain.get_transaction_receipt(reg.commitTxHash, settings.PRIMARY_CHAIN_ID)
    except ExternalServiceError as e:
        log(event="commit_receipt_unavailable", userId=user_id, threadId=thread_id, error=str(e))
        receipt = None

    if receipt is None:
        log(event="commit_not_yet_mined", userId=user_id, threadId=thread_id, txHash=reg.commitTxHash)
        flow_repo.update_data(user_id, thread_id, {"commitUnminedAtMs": now_ms()})
        scheduler.schedule(settings.COMMIT_RECHECK_SEC, scheduler.COMMIT_WAIT_JOB, user_id, thread_id)
        return

    if not chain.receipt_succeeded(receipt):
        lifecycle.finish(
            flow, sm.FAILED, "failed",
            f"The commit transaction ({reg.commitTxHash}) reverted on-chain. Run the registration of {reg.name} again.",
        )
        return

    # mined after the last unmined sighting, so maturity counts from there
    if reg.commitUnminedAtMs:
        remaining = int(settings.COMMIT_WAIT_SEC) - int(elapsed_sec(reg.commitUnminedAtMs))
        if remaining > 0:
            log(event="commit_maturing", userId=user_id, threadId=thread_id, remainingSec=remaining)
            scheduler.schedule(remaining, scheduler.COMMIT_WAIT_JOB, user_id, thread_id)
            return

    flow = flow_repo.update_data(user_id, thread_id, {"commitConfirmedAtMs": now_ms()})
    ask(
        flow.ref,
        correlator.REGISTER_CONFIRM,
        f"Ready to complete {reg.name}",
        confirm_buttons("Register (step 2 of 2)", "Cancel"),
        step=2,
        subtitle=f"Pays {format_eth(reg.domainPriceWei)} ETH + gas from {short_address(reg.selectedWallet)}.",
    )


def handle_register_confirm(req: correlator.ResolvedRequest, answer: FormAnswer) -> bool:
    flow = _load(req.userId, req.threadId, sm.STEP1_COMPLETE)
    if flow is None or not answer.confirmed:
        return False
    try:
        request_register(flow)
    except SignerMismatch as e:
        log(event="security_signer_mismatch", userId=req.userId, threadId=req.threadId, owner=e.owner, signer=e.signer)
        lifecycle.finish(
            flow, sm.FAILED, "failed",
            "The commitment was made for a different wallet than the one that would sign. "
            "For safety the registration was stopped; please start it again.",
        )
    return True


def request_register(flow: Flow) -> Flow:
    """Step 2. Refuses to build anything unless the commitment owner is the signer."""
    reg = RegistrationData.from_dict(flow.data)
    if _commit_expired(reg):
        return _restart_commitment(flow)

    c = reg.commitment
    if c is None or not same_address(c.owner, reg.selectedWallet):
        raise SignerMismatch(c.owner if c else "", reg.selectedWallet or "")

    call = registry.encode_register(c.name, c.owner, c.durationSec, c.secret, c.domainPriceWei)
    flow = flow_repo.update_status(flow.userId, flow.threadId, sm.STEP2_PENDING, expected=sm.STEP1_COMPLETE)
    flow = flow_repo.update_data(flow.userId, flow.threadId, {"currentStep": 2})
    request_signature(
        flow.ref,
        correlator.REGISTER,
        f"Step 2/2: register {reg.name}",
        settings.PRIMARY_CHAIN_ID,
        call,
        signer=reg.selectedWallet,
        step=2,
    )
    return flow


def handle_register_tx(req: correlator.ResolvedRequest, tx_hash: str) -> bool:
    flow = _load(req.userId, req.threadId, sm.STEP2_PENDING)
    if flow is None:
        return False
    reg = RegistrationData.from_dict(flow.data)

    if not tx_hash:
        lifecycle.finish(
            flow, sm.FAILED, "failed",
            f"Register transaction rejected. Step 1 (commit {reg.commitTxHash}) is on-chain and stays valid "
            f"for 24 hours, but {reg.name} is not registered. Run the registration again to finish.",
        )
        return True

    flow_repo.update_data(req.userId, req.threadId, {"registerTxHash": tx_hash})
    log(
        event="registration_completed",
        userId=req.userId,
        threadId=req.threadId,
        name=reg.name,
        owner=reg.selectedWallet,
        years=reg.durationYears,
        commitTxHash=reg.commitTxHash,
        registerTxHash=tx_hash,
    )
    lifecycle.finish(
        flow, sm.COMPLETE, "completed",
        f"{reg.name} is registered to {short_address(reg.selectedWallet)} for {reg.durationYears} year"
        + ("s" if reg.durationYears != 1 else "") + f". Transaction: {tx_hash}",
    )
    return True
