"""
Outbound user interaction helpers.

Every prompt that expects an answer gets a fresh requestId from the
correlator before it is sent, so the answer can be matched back to the
flow and step that asked for it.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import ensflow.gateways.transport as transport
from ensflow.core import correlator
from ensflow.gateways.registry import TxCall
from ensflow.observability.logging import log
from ensflow.store.models import ConversationRef


@dataclass
class FormAnswer:
    clicked: Optional[str] = None
    values: Dict[str, str] = field(default_factory=dict)

    @property
    def confirmed(self) -> bool:
        return self.clicked == "confirm"

    @property
    def cancelled(self) -> bool:
        return self.clicked == "cancel"


def say(ref: ConversationRef, text: str) -> None:
    transport.send_message(ref.channelId, ref.threadId, text)


def button(component_id: str, label: str) -> dict:
    return {"id": component_id, "type": "button", "label": label}


def text_input(component_id: str, placeholder: str) -> dict:
    return {"id": component_id, "type": "textInput", "placeholder": placeholder}


def confirm_buttons(confirm_label: str = "Confirm", cancel_label: str = "Cancel") -> List[dict]:
    return [button("confirm", confirm_label), button("cancel", cancel_label)]


def ask(
    ref: ConversationRef,
    kind: str,
    title: str,
    components: List[dict],
    step: int = 0,
    subtitle: Optional[str] = None,
) -> str:
    request_id = correlator.issue(kind, ref.userId, ref.threadId, step)
    transport.send_form(ref.channelId, ref.threadId, ref.userId, request_id, title, components, subtitle)
    return request_id


def request_signature(
    ref: ConversationRef,
    kind: str,
    title: str,
    chain_id: int,
    call: TxCall,
    signer: str,
    step: int = 0,
) -> str:
    request_id = correlator.issue(kind, ref.userId, ref.threadId, step)
    transport.send_transaction(
        ref.channelId,
        ref.threadId,
        ref.userId,
        request_id,
        title,
        chain_id,
        call.to,
        call.data,
        call.valueWei,
        signer,
    )
    log(
        event="tx_requested",
        userId=ref.userId,
        threadId=ref.threadId,
        kind=kind,
        step=int(step),
        chainId=int(chain_id),
        to=call.to,
        valueWei=int(call.valueWei),
        signer=signer,
    )
    return request_id
