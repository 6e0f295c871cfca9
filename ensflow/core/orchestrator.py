"""
Command Dispatcher.

Entry points called by the HTTP layer. Top-level commands pre-empt any flow
the user left running; interaction responses are resolved through the
correlator before any handler may touch a flow. Every entry point is safe to
call twice with the same input.
"""
from typing import List, Optional

from ensflow.core import bridge, correlator, lifecycle, registration, renew, subdomain, transfer
from ensflow.core.commands import (
    BridgeCommand,
    CancelCommand,
    PartialCommand,
    RegisterCommand,
    RenewCommand,
    SubdomainCommand,
    TransferCommand,
)
from ensflow.core.errors import Expired, ExternalServiceError, Forbidden
from ensflow.core.notify import FormAnswer, say
from ensflow.observability import metrics
from ensflow.observability.logging import log
from ensflow.store.models import ConversationRef

TX_HANDLERS = {
    correlator.COMMIT: registration.handle_commit_tx,
    correlator.REGISTER: registration.handle_register_tx,
    correlator.BRIDGE_TX: bridge.handle_bridge_tx,
    correlator.SUBDOMAIN_TX: subdomain.handle_subdomain_tx,
    correlator.TRANSFER_TX: transfer.handle_transfer_tx,
    correlator.RENEW_TX: renew.handle_renew_tx,
}

FORM_HANDLERS = {
    correlator.DURATION: registration.handle_duration,
    correlator.WALLET_SELECT: registration.handle_wallet_selection,
    correlator.COMMIT_CONFIRM: registration.handle_commit_confirm,
    correlator.REGISTER_CONFIRM: registration.handle_register_confirm,
    correlator.BRIDGE_CONFIRM: bridge.handle_bridge_confirm,
    correlator.CONTINUE_BRIDGE: bridge.handle_continue,
    correlator.TRANSFER_CONFIRM: transfer.handle_transfer_confirm,
    correlator.RENEW_DURATION: renew.handle_renew_duration,
    correlator.RENEW_CONFIRM: renew.handle_renew_confirm,
}

FIELD_PROMPTS = {
    "name": "the name (e.g. alice.eth)",
    "duration": "how many years",
    "recipient": "the recipient address",
    "parent": "the parent name you own",
    "label": "the subdomain label",
    "resolveAddress": "the address the subdomain should point to",
    "amount": "how much ETH",
}


def _transient(ref: ConversationRef, e: ExternalServiceError) -> None:
    log(event="external_service_error", userId=ref.userId, threadId=ref.threadId, service=e.service, error=str(e)[:300])
    if e.service == "transport":
        return
    try:
        say(ref, "I couldn't reach a service I depend on. Nothing was changed; please try again in a moment.")
    except ExternalServiceError as send_err:
        log(event="transient_notice_failed", userId=ref.userId, threadId=ref.threadId, error=str(send_err)[:300])


# --- commands ---

def handle_cancel(ref: ConversationRef) -> dict:
    flow = lifecycle.cancel(ref)
    if flow is None:
        say(ref, "There's nothing in progress to cancel.")
        return {"handled": False}
    say(ref, f"Cancelled the {flow.type} in progress. Nothing further will be sent to your wallet.")
    return {"handled": True, "type": flow.type}


def _ask_missing(ref: ConversationRef, command: PartialCommand) -> dict:
    wanted = [FIELD_PROMPTS.get(m, m) for m in command.missing] or ["a few more details"]
    say(ref, f"To {command.intended}, I still need " + ", ".join(wanted) + ".")
    return {"handled": False, "missing": list(command.missing)}


def handle_command(ref: ConversationRef, command, wallets: Optional[List[str]] = None) -> dict:
    wallets = list(wallets or [])
    log(event="command_received", userId=ref.userId, threadId=ref.threadId, action=command.action)

    try:
        if isinstance(command, CancelCommand):
            return handle_cancel(ref)
        if isinstance(command, PartialCommand):
            return _ask_missing(ref, command)

        superseded = lifecycle.supersede(ref.userId)
        if superseded:
            log(event="command_preempted_flows", userId=ref.userId, threadId=ref.threadId, count=superseded)

        if isinstance(command, RegisterCommand):
            flow = registration.handle_register(ref, command.name, command.duration, wallets)
        elif isinstance(command, RenewCommand):
            flow = renew.handle_renew(ref, command.name, command.duration, wallets)
        elif isinstance(command, TransferCommand):
            flow = transfer.handle_transfer(ref, command.name, command.recipient, wallets)
        elif isinstance(command, SubdomainCommand):
            flow = subdomain.handle_subdomain(
                ref, command.parent, command.label, command.resolveAddress, wallets, command.recipient
            )
        elif isinstance(command, BridgeCommand):
            flow = bridge.handle_bridge(ref, command.amountWei, wallets)
        else:
            raise ValueError(f"unsupported command: {command!r}")
    except ExternalServiceError as e:
        _transient(ref, e)
        return {"handled": False, "error": e.service}

    if flow is None:
        return {"handled": True, "flow": None}
    return {"handled": True, "flow": {"type": flow.type, "status": flow.status}}


# --- interaction responses ---

def _resolve(user_id: str, request_id: str):
    try:
        return correlator.resolve(request_id, user_id), None
    except Forbidden:
        reason = "forbidden"
    except Expired:
        reason = "expired"
    metrics.increment_correlation_rejected(reason)
    log(event="interaction_rejected", userId=user_id, reason=reason, requestId=request_id)
    return None, reason


def _signed_hash(tx_hash: Optional[str]) -> str:
    """Empty, bare "0x" and all-zero hashes all mean the user rejected the request."""
    tx_hash = (tx_hash or "").strip()
    digits = tx_hash[2:] if tx_hash.lower().startswith("0x") else tx_hash
    if not digits.strip("0"):
        return ""
    return tx_hash


def _ref_for(user_id: str, channel_id: str, thread_id: Optional[str], request_id: str) -> ConversationRef:
    if not thread_id:
        parts = (request_id or "").split(":")
        thread_id = parts[2] if len(parts) == 4 else ""
    return ConversationRef(userId=user_id, channelId=channel_id, threadId=thread_id or "")


def handle_transaction_response(
    user_id: str,
    channel_id: str,
    request_id: str,
    tx_hash: Optional[str],
    thread_id: Optional[str] = None,
) -> dict:
    tx_hash = _signed_hash(tx_hash)
    ref = _ref_for(user_id, channel_id, thread_id, request_id)

    req, reason = _resolve(user_id, request_id)
    if req is None or req.kind not in TX_HANDLERS:
        if tx_hash:
            say(ref, f"Got your transaction {tx_hash}, but that request is no longer active, so nothing else will happen.")
        return {"handled": False, "reason": reason or "wrong_kind"}

    try:
        handled = TX_HANDLERS[req.kind](req, tx_hash)
    except ExternalServiceError as e:
        _transient(ref, e)
        return {"handled": False, "error": e.service}

    correlator.retire(request_id)
    if not handled and tx_hash:
        say(ref, f"Got your transaction {tx_hash}, but that step was already handled.")
    log(event="tx_response_applied", userId=user_id, threadId=req.threadId, kind=req.kind, handled=handled, rejected=not tx_hash)
    return {"handled": bool(handled)}


def handle_form_response(
    user_id: str,
    channel_id: str,
    request_id: str,
    answer: FormAnswer,
    thread_id: Optional[str] = None,
) -> dict:
    ref = _ref_for(user_id, channel_id, thread_id, request_id)

    req, reason = _resolve(user_id, request_id)
    if req is None or req.kind not in FORM_HANDLERS:
        return {"handled": False, "reason": reason or "wrong_kind"}

    if answer.cancelled:
        correlator.retire(request_id)
        return handle_cancel(ConversationRef(userId=user_id, channelId=channel_id, threadId=req.threadId))

    try:
        handled = FORM_HANDLERS[req.kind](req, answer)
    except ExternalServiceError as e:
        _transient(ref, e)
        return {"handled": False, "error": e.service}

    # an answer the handler could not use leaves the prompt live
    if handled:
        correlator.retire(request_id)
    log(event="form_response_applied", userId=user_id, threadId=req.threadId, kind=req.kind, clicked=answer.clicked, handled=handled)
    return {"handled": bool(handled)}
