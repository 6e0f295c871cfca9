"""
Renew Orchestrator.

awaiting_duration -> awaiting_confirmation -> step1_pending -> complete
(failed from any non-terminal status)

Only the owner wallet can pay, so the funding planner runs with that single
candidate and the renewal buffer. A bridge hand-off carries the prepared
renewal and comes back at the signing step.
"""
from datetime import datetime, timezone
from typing import List, Optional

import ensflow.gateways.registry as registry
from ensflow.core import correlator, funding, lifecycle
from ensflow.core import state_machine as sm
from ensflow.core.bridge import start_bridge
from ensflow.core.notify import FormAnswer, ask, button, confirm_buttons, request_signature, say, text_input
from ensflow.core.registration import DURATION_CHOICES, valid_years
from ensflow.observability import metrics
from ensflow.observability.logging import log
from ensflow.settings import settings
from ensflow.store import flow_repo
from ensflow.store.models import NEXT_CONTINUE_RENEWAL, BridgeData, ConversationRef, Flow, RenewData
from ensflow.utils.units import format_eth, short_address


def _date(ts: int) -> str:
    if not ts:
        return "unknown"
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).strftime("%Y-%m-%d")


def _ask_duration(ref: ConversationRef, name: str) -> None:
    ask(
        ref,
        correlator.RENEW_DURATION,
        f"Renew {name} for how long?",
        [button(f"years:{y}", f"{y} year" + ("s" if y > 1 else "")) for y in DURATION_CHOICES]
        + [text_input("years", "Other (years)"), button("cancel", "Cancel")],
        subtitle=f"Between {settings.MIN_DURATION_YEARS} and {settings.MAX_DURATION_YEARS} years.",
    )


def handle_renew(ref: ConversationRef, name: str, duration_years: Optional[int], wallets: List[str]) -> Optional[Flow]:
    data = RenewData(name=name, durationYears=valid_years(duration_years), wallets=list(wallets or []))
    metrics.increment_flow(sm.RENEW, "started")

    if data.durationYears is None:
        flow = flow_repo.create(
            Flow(
                userId=ref.userId,
                threadId=ref.threadId,
                channelId=ref.channelId,
                type=sm.RENEW,
                status=sm.AWAITING_DURATION,
                data=data.to_dict(),
            )
        )
        _ask_duration(ref, name)
        return flow

    return _quote_and_fund(ref, data, None)


def handle_renew_duration(req: correlator.ResolvedRequest, answer: FormAnswer) -> bool:
    flow = flow_repo.get(req.userId, req.threadId)
    if flow is None or flow.type != sm.RENEW or flow.status != sm.AWAITING_DURATION:
        return False
    data = RenewData.from_dict(flow.data)

    raw = answer.clicked.split(":", 1)[1] if (answer.clicked or "").startswith("years:") else answer.values.get("years")
    years = valid_years(raw)
    if years is None:
        say(flow.ref, f"Pick a duration between {settings.MIN_DURATION_YEARS} and {settings.MAX_DURATION_YEARS} years.")
        _ask_duration(flow.ref, data.name)
        return True

    data.durationYears = years
    _quote_and_fund(flow.ref, data, flow)
    return True


def _fail_early(ref: ConversationRef, text: str) -> None:
    lifecycle.discard(ref.userId, ref.threadId)
    metrics.increment_flow(sm.RENEW, "failed")
    say(ref, text)


def _quote_and_fund(ref: ConversationRef, data: RenewData, flow: Optional[Flow]) -> Optional[Flow]:
    eoas = funding.filter_eoas(data.wallets)
    if not eoas:
        _fail_early(ref, "I couldn't find a wallet that can sign transactions. Link a regular wallet and try again.")
        return None

    quote = registry.quote_renewal(data.name, data.durationYears, eoas)
    if quote is None:
        _fail_early(ref, f"None of your wallets owns {data.name}, so it can't be renewed from here.")
        return None

    data.ownerWallet = quote.ownerWallet
    data.isWrapped = quote.isWrapped
    data.durationSec = quote.durationSec
    data.totalCostWei = quote.totalCostWei
    data.recommendedValueWei = quote.recommendedValueWei
    data.currentExpiry = quote.currentExpiry
    data.newExpiry = quote.newExpiry

    balance = funding.check_wallet(data.ownerWallet, data.recommendedValueWei, settings.RENEW_BRIDGE_BUFFER_PCT)
    log(
        event="renewal_quoted",
        userId=ref.userId,
        threadId=ref.threadId,
        name=data.name,
        years=data.durationYears,
        valueWei=data.recommendedValueWei,
        funding=balance.funding,
    )

    if balance.funding == funding.BRIDGEABLE:
        say(ref, f"{short_address(data.ownerWallet)} needs ETH on mainnet to renew {data.name}; bridging from Base first.")
        bridge_flow = start_bridge(ref, data.ownerWallet, data.recommendedValueWei, NEXT_CONTINUE_RENEWAL, data.to_dict())
        if bridge_flow is None:
            metrics.increment_flow(sm.RENEW, "failed")
        return bridge_flow

    if balance.funding == funding.INSUFFICIENT:
        _fail_early(
            ref,
            f"Not enough ETH to renew {data.name}: {format_eth(data.recommendedValueWei)} ETH needed on mainnet. "
            f"{short_address(data.ownerWallet)} has {format_eth(balance.primaryWei)} ETH on mainnet and "
            f"{format_eth(balance.sourceWei)} ETH on Base (short {format_eth(balance.shortfallWei)} ETH).",
        )
        return None

    if flow is None:
        flow = flow_repo.create(
            Flow(
                userId=ref.userId,
                threadId=ref.threadId,
                channelId=ref.channelId,
                type=sm.RENEW,
                status=sm.AWAITING_CONFIRMATION,
                data=data.to_dict(),
            )
        )
    else:
        flow_repo.update_data(ref.userId, ref.threadId, data.to_dict())
        flow = flow_repo.update_status(ref.userId, ref.threadId, sm.AWAITING_CONFIRMATION, expected=sm.AWAITING_DURATION)

    ask(
        ref,
        correlator.RENEW_CONFIRM,
        f"Renew {data.name} for {data.durationYears} year" + ("s" if data.durationYears != 1 else "") + "?",
        confirm_buttons("Renew", "Cancel"),
        step=1,
        subtitle=(
            f"Cost ~{format_eth(data.totalCostWei)} ETH (sending {format_eth(data.recommendedValueWei)}, "
            f"excess refunded). Expiry {_date(data.currentExpiry)} -> {_date(data.newExpiry)}."
        ),
    )
    return flow


def handle_renew_confirm(req: correlator.ResolvedRequest, answer: FormAnswer) -> bool:
    flow = flow_repo.get(req.userId, req.threadId)
    if flow is None or flow.type != sm.RENEW or flow.status != sm.AWAITING_CONFIRMATION:
        return False
    if not answer.confirmed:
        return False
    _request_renew(flow)
    return True


def _request_renew(flow: Flow) -> Flow:
    data = RenewData.from_dict(flow.data)
    call = registry.encode_renew(data.name, data.durationSec, data.recommendedValueWei, data.isWrapped)
    flow = flow_repo.update_status(flow.userId, flow.threadId, sm.STEP1_PENDING, expected=sm.AWAITING_CONFIRMATION)
    request_signature(
        flow.ref,
        correlator.RENEW_TX,
        f"Renew {data.name}",
        settings.PRIMARY_CHAIN_ID,
        call,
        signer=data.ownerWallet,
        step=1,
    )
    return flow


def resume_after_bridge(bridge_flow: Flow) -> Flow:
    bridge = BridgeData.from_dict(bridge_flow.data)
    data = RenewData.from_dict(bridge.parentData)
    ref = bridge_flow.ref
    flow = flow_repo.replace(
        ref.userId,
        ref.threadId,
        Flow(
            userId=ref.userId,
            threadId=ref.threadId,
            channelId=ref.channelId,
            type=sm.RENEW,
            status=sm.AWAITING_CONFIRMATION,
            data=data.to_dict(),
        ),
    )
    say(ref, f"Funds arrived. Continuing the renewal of {data.name}.")
    return _request_renew(flow)


def handle_renew_tx(req: correlator.ResolvedRequest, tx_hash: str) -> bool:
    flow = flow_repo.get(req.userId, req.threadId)
    if flow is None or flow.type != sm.RENEW or flow.status != sm.STEP1_PENDING:
        return False
    data = RenewData.from_dict(flow.data)

    if not tx_hash:
        lifecycle.finish(flow, sm.FAILED, "failed", f"Renewal rejected. {data.name} still expires on {_date(data.currentExpiry)}.")
        return True

    flow_repo.update_data(req.userId, req.threadId, {"txHash": tx_hash})
    log(event="renewal_completed", userId=req.userId, threadId=req.threadId, name=data.name, txHash=tx_hash)
    lifecycle.finish(
        flow, sm.COMPLETE, "completed",
        f"{data.name} renewed until {_date(data.newExpiry)}. Transaction: {tx_hash}",
    )
    return True
