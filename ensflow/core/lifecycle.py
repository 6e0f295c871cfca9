"""Terminal bookkeeping shared by every orchestrator."""
from typing import Optional

from ensflow.core import correlator
from ensflow.core.errors import FlowNotFound, InvalidTransition
from ensflow.core.notify import say
from ensflow.observability import metrics
from ensflow.observability.logging import log
from ensflow.store import flow_repo
from ensflow.store.models import ConversationRef, Flow


def discard(user_id: str, thread_id: str) -> None:
    """Drop the flow and every outstanding request for its key."""
    flow_repo.clear(user_id, thread_id)
    correlator.clear_for_flow(user_id, thread_id)


def finish(flow: Flow, status: str, outcome: str, text: Optional[str] = None) -> None:
    """
    Record the terminal status (for the log trail), then clear the key.
    The flow may already be gone if a concurrent cancel won.
    """
    try:
        flow_repo.update_status(flow.userId, flow.threadId, status)
    except (InvalidTransition, FlowNotFound) as e:
        log(event="flow_finish_transition_skipped", userId=flow.userId, threadId=flow.threadId, error=str(e))
    discard(flow.userId, flow.threadId)
    metrics.increment_flow(flow.type, outcome)
    log(event=f"flow_{outcome}", userId=flow.userId, threadId=flow.threadId, type=flow.type)
    if text:
        say(flow.ref, text)


def cancel(ref: ConversationRef) -> Optional[Flow]:
    flow = flow_repo.get(ref.userId, ref.threadId)
    discard(ref.userId, ref.threadId)
    if flow is not None and not flow.is_terminal():
        metrics.increment_flow(flow.type, "cancelled")
        log(event="flow_cancelled", userId=ref.userId, threadId=ref.threadId, type=flow.type, status=flow.status)
        return flow
    return None


def supersede(user_id: str) -> int:
    """A new top-level command wins over anything the user left running, in any thread."""
    stale = flow_repo.find_active_for_user(user_id)
    for flow in stale:
        discard(flow.userId, flow.threadId)
        metrics.increment_flow(flow.type, "cancelled")
        log(event="flow_superseded", userId=flow.userId, threadId=flow.threadId, type=flow.type, status=flow.status)
    return len(stale)


def discard_all(user_id: str) -> int:
    """Drop every flow of the user together with the requests issued for it."""
    for thread_id in flow_repo.thread_ids(user_id):
        correlator.clear_for_flow(user_id, thread_id)
    n = flow_repo.clear_all_for_user(user_id)
    log(event="flows_cleared_for_user", userId=user_id, count=n)
    return n
