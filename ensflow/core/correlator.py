"""
Interaction Correlator

Signing and form requests go out with an opaque requestId of the form
"{kind}:{userId}:{threadId}:{token}". Responses may arrive minutes or hours
later, out of order, or for a flow that no longer exists; resolve() decides
whether a response may touch the flow at all.
"""
import itertools
import threading
from dataclasses import dataclass

from ensflow.core.errors import Expired, Forbidden
from ensflow.observability.logging import log
from ensflow.store import flow_repo, interaction_repo
from ensflow.store.models import PendingInteraction
from ensflow.utils.time import now_ms

# Transaction kinds
COMMIT = "commit"
REGISTER = "register"
BRIDGE_TX = "bridge"
SUBDOMAIN_TX = "subdomain"
TRANSFER_TX = "transfer"
RENEW_TX = "renew"

# Form kinds
DURATION = "duration"
WALLET_SELECT = "wallet_select"
COMMIT_CONFIRM = "commit_confirm"
REGISTER_CONFIRM = "register_confirm"
BRIDGE_CONFIRM = "bridge_confirm"
CONTINUE_BRIDGE = "continue_bridge"
TRANSFER_CONFIRM = "transfer_confirm"
RENEW_DURATION = "renew_duration"
RENEW_CONFIRM = "renew_confirm"

TX_KINDS = {COMMIT, REGISTER, BRIDGE_TX, SUBDOMAIN_TX, TRANSFER_TX, RENEW_TX}
FORM_KINDS = {
    DURATION,
    WALLET_SELECT,
    COMMIT_CONFIRM,
    REGISTER_CONFIRM,
    BRIDGE_CONFIRM,
    CONTINUE_BRIDGE,
    TRANSFER_CONFIRM,
    RENEW_DURATION,
    RENEW_CONFIRM,
}
KINDS = TX_KINDS | FORM_KINDS

_counter = itertools.count()
_counter_lock = threading.Lock()


@dataclass
class ResolvedRequest:
    requestId: str
    kind: str
    userId: str
    threadId: str
    step: int = 0


def _next_token() -> str:
    with _counter_lock:
        n = next(_counter) % 10000
    return f"{now_ms()}{n:04d}"


def issue(kind: str, user_id: str, thread_id: str, step: int = 0) -> str:
    if kind not in KINDS:
        raise ValueError(f"unknown interaction kind: {kind}")
    if not user_id or not thread_id or ":" in user_id or ":" in thread_id:
        raise ValueError("userId/threadId must be non-empty and contain no ':'")

    request_id = f"{kind}:{user_id}:{thread_id}:{_next_token()}"
    interaction_repo.save(
        PendingInteraction(
            requestId=request_id,
            kind=kind,
            expectedUserId=user_id,
            flowKey=flow_repo.flow_key(user_id, thread_id),
            step=int(step),
            createdAt=now_ms(),
        )
    )
    log(event="interaction_issued", userId=user_id, threadId=thread_id, kind=kind, step=int(step))
    return request_id


def decode(request_id: str) -> tuple:
    """Split a requestId into (kind, userId, threadId, token); Expired if malformed."""
    parts = (request_id or "").split(":")
    if len(parts) != 4 or not all(parts) or parts[0] not in KINDS:
        raise Expired(f"malformed request id: {request_id!r}")
    return parts[0], parts[1], parts[2], parts[3]


def resolve(request_id: str, responding_user_id: str) -> ResolvedRequest:
    kind, user_id, thread_id, _ = decode(request_id)

    if user_id != responding_user_id:
        log(event="interaction_forbidden", kind=kind, expectedUserId=user_id, respondingUserId=responding_user_id)
        raise Forbidden(request_id)

    record = interaction_repo.get(request_id)
    if record is None:
        raise Expired(f"unknown or retired request: {request_id}")

    flow = flow_repo.get(user_id, thread_id)
    if flow is None or flow.is_terminal():
        raise Expired(f"no active flow for {request_id}")

    return ResolvedRequest(requestId=request_id, kind=kind, userId=user_id, threadId=thread_id, step=record.step)


def retire(request_id: str) -> None:
    interaction_repo.delete(request_id)


def clear_for_flow(user_id: str, thread_id: str) -> int:
    n = interaction_repo.delete_for_flow(flow_repo.flow_key(user_id, thread_id))
    if n:
        log(event="interactions_cleared", userId=user_id, threadId=thread_id, count=n)
    return n
