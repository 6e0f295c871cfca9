"""
Bridge Orchestrator.

Moves native ETH from the bridge-source chain to the primary chain when an
operation cannot be paid for directly. The blocked parent payload rides
inside the bridge flow (`parentData`) and is handed back through
`nextAction` once funds land; parent and bridge never coexist at one key.

Status: pending -> bridging -> completed | failed
"""
from dataclasses import dataclass
from typing import Optional

import ensflow.gateways.bridge_api as bridge_api
import ensflow.gateways.chain as chain
import ensflow.queue.scheduler as scheduler
from ensflow.core import correlator, lifecycle
from ensflow.core import state_machine as sm
from ensflow.core.errors import ExternalServiceError, FlowNotFound, InvalidTransition
from ensflow.core.notify import FormAnswer, ask, button, confirm_buttons, request_signature, say
from ensflow.gateways.registry import TxCall
from ensflow.observability import metrics
from ensflow.observability.logging import log
from ensflow.settings import settings
from ensflow.store import flow_repo
from ensflow.store.models import (
    NEXT_CONTINUE_REGISTRATION,
    NEXT_CONTINUE_RENEWAL,
    NEXT_NONE,
    BridgeData,
    BridgeQuoteInfo,
    ConversationRef,
    Flow,
)
from ensflow.utils.time import elapsed_sec, now_ms
from ensflow.utils.units import format_eth, short_address

REJECT_AMOUNT_TOO_LOW = "amount_too_low"
REJECT_OUTPUT_SHORT = "output_short"
REJECT_SOURCE_SHORT = "source_short"

_PARENT_LABEL = {
    NEXT_CONTINUE_REGISTRATION: "registration",
    NEXT_CONTINUE_RENEWAL: "renewal",
}


@dataclass
class BridgePlan:
    ok: bool
    requiredWei: int
    inputWei: int = 0
    quote: Optional[bridge_api.BridgeQuote] = None
    sourceWei: int = 0
    neededSourceWei: int = 0
    reason: str = ""


def compute_bridge_input(required_wei: int, fee_wei: int, safety_pct: Optional[int] = None) -> int:
    """(required + fee) inflated by the safety buffer, rounded up to the next wei."""
    if safety_pct is None:
        safety_pct = settings.BRIDGE_SAFETY_BUFFER_PCT
    base = int(required_wei) + max(0, int(fee_wei))
    return -(-base * (100 + int(safety_pct)) // 100)


def plan_bridge(wallet: str, required_wei: int) -> BridgePlan:
    """
    Size a deposit so the quoted output covers required_wei. The first quote
    only prices the fee; the deposit is re-quoted at the inflated input and
    that second quote is the one checked and signed.
    """
    src = settings.BRIDGE_SOURCE_CHAIN_ID
    dst = settings.PRIMARY_CHAIN_ID
    required_wei = int(required_wei)

    probe = bridge_api.get_quote(required_wei, wallet, wallet, src, dst)
    if probe.isAmountTooLow:
        return BridgePlan(ok=False, requiredWei=required_wei, inputWei=required_wei, quote=probe, reason=REJECT_AMOUNT_TOO_LOW)

    input_wei = compute_bridge_input(required_wei, probe.feeWei)
    quote = bridge_api.get_quote(input_wei, wallet, wallet, src, dst)
    plan = BridgePlan(ok=False, requiredWei=required_wei, inputWei=input_wei, quote=quote)

    if quote.isAmountTooLow or input_wei < int(settings.BRIDGE_MIN_AMOUNT_WEI):
        plan.reason = REJECT_AMOUNT_TOO_LOW
        return plan
    if quote.outputWei < required_wei:
        plan.reason = REJECT_OUTPUT_SHORT
        return plan

    plan.sourceWei = chain.get_balance(wallet, src)
    plan.neededSourceWei = input_wei + int(settings.BRIDGE_GAS_ESTIMATE_WEI)
    if plan.sourceWei < plan.neededSourceWei:
        plan.reason = REJECT_SOURCE_SHORT
        return plan

    plan.ok = True
    return plan


def _rejection_text(plan: BridgePlan, next_action: str) -> str:
    if plan.reason == REJECT_AMOUNT_TOO_LOW:
        minimum = plan.quote.minDepositWei if plan.quote else settings.BRIDGE_MIN_AMOUNT_WEI
        text = (
            f"Bridging {format_eth(plan.inputWei)} ETH is below the bridge minimum of "
            f"{format_eth(minimum)} ETH. Top up the wallet on mainnet directly instead."
        )
    elif plan.reason == REJECT_OUTPUT_SHORT:
        text = (
            f"The bridge would only deliver {format_eth(plan.quote.outputWei)} ETH, "
            f"short of the {format_eth(plan.requiredWei)} ETH needed."
        )
    else:
        text = (
            f"Not enough ETH on Base to bridge: need {format_eth(plan.neededSourceWei)} ETH "
            f"({format_eth(plan.inputWei)} bridged + gas), have {format_eth(plan.sourceWei)} ETH. "
            f"Shortfall: {format_eth(plan.neededSourceWei - plan.sourceWei)} ETH."
        )
    parent = _PARENT_LABEL.get(next_action)
    if parent:
        text += f" The {parent} has been cancelled."
    return text


def start_bridge(
    ref: ConversationRef,
    wallet: str,
    required_wei: int,
    next_action: str = NEXT_NONE,
    parent_data: Optional[dict] = None,
) -> Optional[Flow]:
    """
    Quote, then take over the key from the parent (if any) and ask the user to
    confirm. A rejected quote clears the key, so the blocked parent goes too.
    """
    plan = plan_bridge(wallet, required_wei)
    log(
        event="bridge_planned",
        userId=ref.userId,
        threadId=ref.threadId,
        ok=plan.ok,
        reason=plan.reason,
        requiredWei=plan.requiredWei,
        inputWei=plan.inputWei,
        nextAction=next_action,
    )
    if not plan.ok:
        lifecycle.discard(ref.userId, ref.threadId)
        metrics.increment_flow(sm.BRIDGE, "failed")
        say(ref, _rejection_text(plan, next_action))
        return None

    data = BridgeData(
        sourceChainId=int(settings.BRIDGE_SOURCE_CHAIN_ID),
        destChainId=int(settings.PRIMARY_CHAIN_ID),
        requiredWei=plan.requiredWei,
        inputWei=plan.inputWei,
        recipient=wallet,
        quote=BridgeQuoteInfo(
            inputWei=plan.quote.inputWei,
            outputWei=plan.quote.outputWei,
            feeWei=plan.quote.feeWei,
            fillTimeSec=plan.quote.fillTimeSec,
        ),
        nextAction=next_action,
        parentData=dict(parent_data or {}),
        bridgeStatus=sm.PENDING,
    )
    flow = Flow(
        userId=ref.userId,
        threadId=ref.threadId,
        channelId=ref.channelId,
        type=sm.BRIDGE,
        status=sm.PENDING,
        data=data.to_dict(),
    )
    # the parent's outstanding prompts die with it
    correlator.clear_for_flow(ref.userId, ref.threadId)
    flow = flow_repo.replace(ref.userId, ref.threadId, flow)
    metrics.increment_flow(sm.BRIDGE, "started")

    ask(
        ref,
        correlator.BRIDGE_CONFIRM,
        "Bridge ETH from Base",
        confirm_buttons("Bridge", "Cancel"),
        step=1,
        subtitle=(
            f"Send {format_eth(plan.inputWei)} ETH from {short_address(wallet)} on Base, "
            f"receive ~{format_eth(plan.quote.outputWei)} ETH on mainnet "
            f"(fee ~{format_eth(plan.quote.feeWei)} ETH, ~{plan.quote.fillTimeSec or 60}s)."
        ),
    )
    return flow


def _load_bridge(user_id: str, thread_id: str, status: str) -> Optional[Flow]:
    flow = flow_repo.get(user_id, thread_id)
    if flow is None or flow.type != sm.BRIDGE or flow.status != status:
        log(
            event="bridge_stale",
            userId=user_id,
            threadId=thread_id,
            expected=status,
            found=(flow.status if flow else None),
        )
        return None
    return flow


def handle_bridge_confirm(req: correlator.ResolvedRequest, answer: FormAnswer) -> bool:
    user_id, thread_id = req.userId, req.threadId
    flow = _load_bridge(user_id, thread_id, sm.PENDING)
    if flow is None:
        return False
    data = BridgeData.from_dict(flow.data)
    if data.txRequestedAtMs:
        log(event="bridge_confirm_duplicate", userId=user_id, threadId=thread_id)
        return False
    if not answer.confirmed:
        return False

    # quotes go stale; sign a fresh one at the same input
    quote = bridge_api.get_quote(
        data.inputWei, data.recipient, data.recipient, data.sourceChainId, data.destChainId
    )
    if quote.isAmountTooLow or quote.outputWei < data.requiredWei:
        plan = BridgePlan(
            ok=False,
            requiredWei=data.requiredWei,
            inputWei=data.inputWei,
            quote=quote,
            reason=REJECT_AMOUNT_TOO_LOW if quote.isAmountTooLow else REJECT_OUTPUT_SHORT,
        )
        lifecycle.finish(flow, sm.FAILED, "failed", _rejection_text(plan, data.nextAction))
        return True

    if flow_repo.claim(user_id, thread_id, "txRequestedAtMs", now_ms(), expected=sm.PENDING) is None:
        log(event="bridge_confirm_duplicate", userId=user_id, threadId=thread_id)
        return False
    request_signature(
        flow.ref,
        correlator.BRIDGE_TX,
        f"Bridge {format_eth(data.inputWei)} ETH to mainnet",
        data.sourceChainId,
        TxCall(to=quote.txTo, data=quote.txData, valueWei=quote.txValueWei),
        signer=data.recipient,
        step=1,
    )
    return True


def handle_bridge_tx(req: correlator.ResolvedRequest, tx_hash: str) -> bool:
    user_id, thread_id = req.userId, req.threadId
    flow = _load_bridge(user_id, thread_id, sm.PENDING)
    if flow is None:
        return False
    data = BridgeData.from_dict(flow.data)

    if not tx_hash:
        parent = _PARENT_LABEL.get(data.nextAction)
        text = "Bridge transaction rejected. No funds were moved."
        if parent:
            text += f" The {parent} has been cancelled; run the command again when ready."
        lifecycle.finish(flow, sm.FAILED, "failed", text)
        return True

    flow_repo.update_data(
        user_id,
        thread_id,
        {"depositTxHash": tx_hash, "pollStartedAtMs": now_ms(), "bridgeStatus": sm.BRIDGING},
    )
    flow = flow_repo.update_status(user_id, thread_id, sm.BRIDGING, expected=sm.PENDING)
    say(
        flow.ref,
        f"Bridge submitted ({tx_hash}). Funds usually arrive in about "
        f"{data.quote.fillTimeSec or 60} seconds; I'll keep an eye on it.",
    )

    deposit_id = bridge_api.extract_deposit_id(tx_hash, data.sourceChainId)
    if deposit_id:
        flow_repo.update_data(user_id, thread_id, {"depositId": deposit_id})
        scheduler.schedule(settings.BRIDGE_POLL_INTERVAL_SEC, scheduler.BRIDGE_STATUS_JOB, user_id, thread_id)
        log(event="bridge_tracking_deposit", userId=user_id, threadId=thread_id, depositId=deposit_id)
        return True

    # no deposit id: watch the destination balance instead
    try:
        baseline = chain.get_balance(data.recipient, data.destChainId)
    except ExternalServiceError:
        baseline = None
    flow_repo.update_data(user_id, thread_id, {"baselineBalanceWei": baseline})
    scheduler.schedule(settings.BALANCE_POLL_INTERVAL_SEC, scheduler.BALANCE_DELTA_JOB, user_id, thread_id)
    log(event="bridge_tracking_balance", userId=user_id, threadId=thread_id, baselineWei=baseline)
    return True


def poll_bridge_status(user_id: str, thread_id: str) -> None:
    flow = _load_bridge(user_id, thread_id, sm.BRIDGING)
    if flow is None:
        return
    data = BridgeData.from_dict(flow.data)
    if not data.depositId:
        return

    try:
        status = bridge_api.get_deposit_status(data.depositId, data.sourceChainId)
    except ExternalServiceError as e:
        log(event="bridge_status_unavailable", userId=user_id, threadId=thread_id, error=str(e))
        status = bridge_api.DepositStatus(status=bridge_api.STATUS_PENDING)

    log(event="bridge_status_polled", userId=user_id, threadId=thread_id, status=status.status)

    if status.status == bridge_api.STATUS_FILLED:
        flow = flow_repo.update_data(user_id, thread_id, {"fillTxHash": status.fillTxHash})
        metrics.record_bridge_latency(now_ms() - int(data.pollStartedAtMs or now_ms()))
        on_funds_arrived(flow)
        return

    if status.status == bridge_api.STATUS_EXPIRED:
        lifecycle.finish(
            flow,
            sm.FAILED,
            "failed",
            "The bridge deposit expired without being filled. Your funds remain on Base "
            "and will be refunded there by the bridge.",
        )
        return

    _reschedule_or_offer(flow, data, settings.BRIDGE_POLL_INTERVAL_SEC, settings.BRIDGE_MAX_WAIT_SEC, scheduler.BRIDGE_STATUS_JOB)


def poll_balance_delta(user_id: str, thread_id: str) -> None:
    flow = _load_bridge(user_id, thread_id, sm.BRIDGING)
    if flow is None:
        return
    data = BridgeData.from_dict(flow.data)

    try:
        current = chain.get_balance(data.recipient, data.destChainId)
    except ExternalServiceError as e:
        log(event="bridge_balance_unavailable", userId=user_id, threadId=thread_id, error=str(e))
        current = None

    if current is not None and data.baselineBalanceWei is None:
        flow = flow_repo.update_data(user_id, thread_id, {"baselineBalanceWei": current})
        data.baselineBalanceWei = current
    elif current is not None:
        expected = data.quote.outputWei or data.requiredWei
        threshold = expected * int(settings.BALANCE_DELTA_THRESHOLD_PCT) // 100
        increase = current - int(data.baselineBalanceWei)
        log(event="bridge_balance_polled", userId=user_id, threadId=thread_id, increaseWei=increase, thresholdWei=threshold)
        if increase >= threshold:
            metrics.record_bridge_latency(now_ms() - int(data.pollStartedAtMs or now_ms()))
            on_funds_arrived(flow)
            return

    _reschedule_or_offer(
        flow, data, settings.BALANCE_POLL_INTERVAL_SEC, settings.BALANCE_POLL_MAX_WAIT_SEC, scheduler.BALANCE_DELTA_JOB
    )


def _reschedule_or_offer(flow: Flow, data: BridgeData, interval: int, max_wait: int, job: str) -> None:
    if elapsed_sec(data.pollStartedAtMs) + interval <= max_wait:
        scheduler.schedule(interval, job, flow.userId, flow.threadId)
        return
    log(event="bridge_wait_timeout", userId=flow.userId, threadId=flow.threadId, maxWaitSec=int(max_wait))
    offer_continue(flow, "The bridge is taking longer than expected.")


def offer_continue(flow: Flow, reason: str) -> None:
    data = BridgeData.from_dict(flow.data)
    ask(
        flow.ref,
        correlator.CONTINUE_BRIDGE,
        "Bridge still in progress",
        [button("continue", "Check balance & continue"), button("cancel", "Cancel")],
        step=1,
        subtitle=(
            f"{reason} Check {short_address(data.recipient)} on mainnet and continue once "
            f"~{format_eth(data.quote.outputWei or data.requiredWei)} ETH has arrived."
        ),
    )


def handle_continue(req: correlator.ResolvedRequest, answer: FormAnswer) -> bool:
    flow = _load_bridge(req.userId, req.threadId, sm.BRIDGING)
    if flow is None or answer.clicked != "continue":
        return False
    on_funds_arrived(flow)
    return True


def on_funds_arrived(flow: Flow) -> None:
    """
    Hand control back to the parent. The primary balance is re-read here:
    a filled deposit is not proof the funds are spendable yet.
    """
    data = BridgeData.from_dict(flow.data)
    try:
        balance = chain.get_balance(data.recipient, data.destChainId)
    except ExternalServiceError:
        balance = None

    if data.nextAction != NEXT_NONE and (balance is None or balance < data.requiredWei):
        offer_continue(
            flow,
            f"Funds are not visible on mainnet yet ({format_eth(balance or 0)} of "
            f"{format_eth(data.requiredWei)} ETH).",
        )
        return

    try:
        flow_repo.update_data(flow.userId, flow.threadId, {"bridgeStatus": sm.COMPLETED})
        flow = flow_repo.update_status(flow.userId, flow.threadId, sm.COMPLETED, expected=sm.BRIDGING)
    except (InvalidTransition, FlowNotFound) as e:
        # a timer and a continue click raced; the first one wins
        log(event="bridge_resume_skipped", userId=flow.userId, threadId=flow.threadId, error=str(e))
        return

    metrics.increment_flow(sm.BRIDGE, "completed")
    log(event="bridge_completed", userId=flow.userId, threadId=flow.threadId, nextAction=data.nextAction)

    if data.nextAction == NEXT_CONTINUE_REGISTRATION:
        from ensflow.core.registration import resume_after_bridge

        resume_after_bridge(flow)
    elif data.nextAction == NEXT_CONTINUE_RENEWAL:
        from ensflow.core.renew import resume_after_bridge

        resume_after_bridge(flow)
    else:
        lifecycle.discard(flow.userId, flow.threadId)
        text = "Bridge complete."
        if balance is not None:
            text += f" {short_address(data.recipient)} now holds {format_eth(balance)} ETH on mainnet."
        say(flow.ref, text)


def handle_bridge(ref: ConversationRef, amount_wei: int, wallets: list) -> Optional[Flow]:
    """Standalone bridge: deliver amount_wei to the best-funded Base wallet's mainnet address."""
    from ensflow.core.funding import filter_eoas

    eoas = filter_eoas(wallets)
    if not eoas:
        say(ref, "I couldn't find a wallet that can sign transactions. Link a regular wallet and try again.")
        return None
    balances = {a: chain.get_balance(a, settings.BRIDGE_SOURCE_CHAIN_ID) for a in eoas}
    wallet = max(eoas, key=lambda a: balances[a])
    return start_bridge(ref, wallet, int(amount_wei), NEXT_NONE)
