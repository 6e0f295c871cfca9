"""
Transfer Orchestrator: one irreversible ownership transfer, behind an
explicit confirmation.

awaiting_confirmation -> step1_pending -> complete   (failed from any)
"""
from typing import List, Optional

import ensflow.gateways.chain as chain
import ensflow.gateways.registry as registry
from ensflow.core import correlator, funding, lifecycle
from ensflow.core import state_machine as sm
from ensflow.core.notify import FormAnswer, ask, confirm_buttons, request_signature, say
from ensflow.observability import metrics
from ensflow.observability.logging import log
from ensflow.settings import settings
from ensflow.store import flow_repo
from ensflow.store.models import ConversationRef, Flow, TransferData
from ensflow.utils.units import is_address, same_address, short_address


def handle_transfer(ref: ConversationRef, name: str, recipient: str, wallets: List[str]) -> Optional[Flow]:
    if not is_address(recipient):
        say(ref, "The recipient must be a 0x address (42 characters).")
        return None

    eoas = funding.filter_eoas(wallets)
    if not eoas:
        say(ref, "I couldn't find a wallet that can sign transactions. Link a regular wallet and try again.")
        return None

    ownership = registry.verify_ownership(name, eoas)
    if not ownership.owned or not ownership.ownerWallet:
        owner = f" It is owned by {short_address(ownership.actualOwner)}." if ownership.actualOwner else ""
        say(ref, f"None of your wallets owns {name}.{owner}")
        return None
    if same_address(recipient, ownership.ownerWallet):
        say(ref, f"{short_address(recipient)} already owns {name}.")
        return None

    data = TransferData(
        name=name,
        recipient=recipient,
        ownerWallet=ownership.ownerWallet,
        isWrapped=ownership.isWrapped,
        contract=registry.transfer_contract(name, ownership.isWrapped),
        recipientIsContract=chain.is_contract(recipient, settings.PRIMARY_CHAIN_ID),
    )
    flow = flow_repo.create(
        Flow(
            userId=ref.userId,
            threadId=ref.threadId,
            channelId=ref.channelId,
            type=sm.TRANSFER,
            status=sm.AWAITING_CONFIRMATION,
            data=data.to_dict(),
        )
    )
    metrics.increment_flow(sm.TRANSFER, "started")

    warning = ""
    if data.recipientIsContract:
        warning = " The recipient is a smart contract; make sure it can manage names or the name may be lost."
    ask(
        ref,
        correlator.TRANSFER_CONFIRM,
        f"Transfer {name}?",
        confirm_buttons("Transfer", "Cancel"),
        step=1,
        subtitle=(
            f"From {short_address(data.ownerWallet)} to {recipient}. This cannot be undone.{warning}"
        ),
    )
    return flow


def handle_transfer_confirm(req: correlator.ResolvedRequest, answer: FormAnswer) -> bool:
    flow = flow_repo.get(req.userId, req.threadId)
    if flow is None or flow.type != sm.TRANSFER or flow.status != sm.AWAITING_CONFIRMATION:
        return False
    if not answer.confirmed:
        return False
    data = TransferData.from_dict(flow.data)

    call = registry.encode_transfer(data.name, data.ownerWallet, data.recipient, data.contract)
    flow = flow_repo.update_status(req.userId, req.threadId, sm.STEP1_PENDING, expected=sm.AWAITING_CONFIRMATION)
    request_signature(
        flow.ref,
        correlator.TRANSFER_TX,
        f"Transfer {data.name}",
        settings.PRIMARY_CHAIN_ID,
        call,
        signer=data.ownerWallet,
        step=1,
    )
    return True


def handle_transfer_tx(req: correlator.ResolvedRequest, tx_hash: str) -> bool:
    flow = flow_repo.get(req.userId, req.threadId)
    if flow is None or flow.type != sm.TRANSFER or flow.status != sm.STEP1_PENDING:
        return False
    data = TransferData.from_dict(flow.data)

    if not tx_hash:
        lifecycle.finish(flow, sm.FAILED, "failed", f"Transfer rejected. {data.name} was not moved.")
        return True

    flow_repo.update_data(req.userId, req.threadId, {"txHash": tx_hash})
    log(
        event="transfer_completed",
        userId=req.userId,
        threadId=req.threadId,
        name=data.name,
        contract=data.contract,
        recipient=data.recipient,
        txHash=tx_hash,
    )
    lifecycle.finish(
        flow, sm.COMPLETE, "completed",
        f"{data.name} transferred to {short_address(data.recipient)}. Transaction: {tx_hash}",
    )
    return True
