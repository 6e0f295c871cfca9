"""
Subdomain Orchestrator.

step 1: create `label.parent` owned by the parent owner
step 2: set its address record to the resolve target
step 3: transfer it to the recipient (only when recipient != parent owner)

Every step is signed by the wallet that owns the parent.
"""
from typing import List, Optional

import ensflow.gateways.registry as registry
from ensflow.core import correlator, funding, lifecycle
from ensflow.core import state_machine as sm
from ensflow.core.notify import request_signature, say
from ensflow.observability import metrics
from ensflow.observability.logging import log
from ensflow.settings import settings
from ensflow.store import flow_repo
from ensflow.store.models import ConversationRef, Flow, SubdomainData
from ensflow.utils.units import is_address, same_address, short_address


def _step_label(data: SubdomainData, step: int) -> str:
    if step == 1:
        return f"create {data.fullName}"
    if step == 2:
        return f"point {data.fullName} at {short_address(data.resolveAddress)}"
    return f"transfer {data.fullName} to {short_address(data.recipient)}"


def _request_step(flow: Flow, data: SubdomainData, step: int) -> None:
    call = registry.encode_subdomain_step(
        step, data.fullName, data.ownerWallet, data.resolveAddress, data.recipient, data.isWrapped
    )
    if step > 1:
        flow_repo.update_status(flow.userId, flow.threadId, sm.step_pending(step), expected=sm.step_complete(step - 1))
        flow_repo.update_data(flow.userId, flow.threadId, {"currentStep": step})
    request_signature(
        flow.ref,
        correlator.SUBDOMAIN_TX,
        f"Step {step}/{data.totalSteps}: {_step_label(data, step)}",
        settings.PRIMARY_CHAIN_ID,
        call,
        signer=data.ownerWallet,
        step=step,
    )


def handle_subdomain(
    ref: ConversationRef,
    parent: str,
    label: str,
    resolve_address: str,
    wallets: List[str],
    recipient: Optional[str] = None,
) -> Optional[Flow]:
    label = (label or "").strip().lower()
    parent = (parent or "").strip().lower()
    recipient = recipient or resolve_address

    if not label or not parent or "." in label:
        say(ref, "I need a subdomain label and a parent name, e.g. 'blog' under 'alice.eth'.")
        return None
    if not is_address(resolve_address) or not is_address(recipient):
        say(ref, "The subdomain target must be a 0x address (42 characters).")
        return None

    eoas = funding.filter_eoas(wallets)
    if not eoas:
        say(ref, "I couldn't find a wallet that can sign transactions. Link a regular wallet and try again.")
        return None

    ownership = registry.verify_ownership(parent, eoas)
    if not ownership.owned or not ownership.ownerWallet:
        owner = f" It is owned by {short_address(ownership.actualOwner)}." if ownership.actualOwner else ""
        say(ref, f"None of your wallets owns {parent}.{owner}")
        return None

    full_name = f"{label}.{parent}"
    if registry.subname_exists(full_name):
        say(ref, f"{full_name} already exists.")
        return None

    data = SubdomainData(
        parent=parent,
        label=label,
        fullName=full_name,
        resolveAddress=resolve_address,
        ownerWallet=ownership.ownerWallet,
        recipient=recipient,
        isWrapped=ownership.isWrapped,
        currentStep=1,
        totalSteps=2 if same_address(recipient, ownership.ownerWallet) else 3,
    )
    flow = flow_repo.create(
        Flow(
            userId=ref.userId,
            threadId=ref.threadId,
            channelId=ref.channelId,
            type=sm.SUBDOMAIN,
            status=sm.STEP1_PENDING,
            data=data.to_dict(),
        )
    )
    metrics.increment_flow(sm.SUBDOMAIN, "started")
    log(
        event="subdomain_started",
        userId=ref.userId,
        threadId=ref.threadId,
        fullName=full_name,
        totalSteps=data.totalSteps,
        wrapped=data.isWrapped,
    )
    say(ref, f"Creating {full_name} takes {data.totalSteps} transactions, all signed by {short_address(data.ownerWallet)}.")
    _request_step(flow, data, 1)
    return flow


def _rejection_text(data: SubdomainData, step: int) -> str:
    done = [f"step {s} ({_step_label(data, s)}): {getattr(data, f'step{s}TxHash')}" for s in range(1, step)]
    todo = [f"step {s}: {_step_label(data, s)}" for s in range(step, data.totalSteps + 1)]
    if not done:
        return f"Step {step} was rejected. Nothing was changed on-chain."
    return (
        f"Step {step} was rejected. Already on-chain: " + "; ".join(done) + ". "
        "Still to do manually: " + "; ".join(todo) + "."
    )


def handle_subdomain_tx(req: correlator.ResolvedRequest, tx_hash: str) -> bool:
    step = int(req.step or 0)
    flow = flow_repo.get(req.userId, req.threadId)
    if flow is None or flow.type != sm.SUBDOMAIN or flow.status != sm.step_pending(step):
        log(
            event="subdomain_stale",
            userId=req.userId,
            threadId=req.threadId,
            step=step,
            found=(flow.status if flow else None),
        )
        return False
    data = SubdomainData.from_dict(flow.data)

    if not tx_hash:
        lifecycle.finish(flow, sm.FAILED, "failed", _rejection_text(data, step))
        return True

    flow = flow_repo.update_data(req.userId, req.threadId, {f"step{step}TxHash": tx_hash})
    data = SubdomainData.from_dict(flow.data)
    if step < 3:
        flow = flow_repo.update_status(req.userId, req.threadId, sm.step_complete(step), expected=sm.step_pending(step))

    if step >= data.totalSteps:
        log(event="subdomain_completed", userId=req.userId, threadId=req.threadId, fullName=data.fullName)
        lifecycle.finish(
            flow, sm.COMPLETE, "completed",
            f"{data.fullName} now points to {short_address(data.resolveAddress)}"
            + (f" and belongs to {short_address(data.recipient)}." if data.totalSteps == 3 else "."),
        )
        return True

    _request_step(flow, data, step + 1)
    return True
