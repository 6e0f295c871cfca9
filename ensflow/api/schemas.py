from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ensflow.core.commands import Command


class CommandRequest(BaseModel):
    userId: str
    channelId: str
    threadId: str
    # Wallets linked to the user on the messaging platform
    wallets: List[str] = Field(default_factory=list)
    command: Command


class TransactionResponseRequest(BaseModel):
    userId: str
    channelId: str
    requestId: str
    threadId: Optional[str] = None
    # Empty (or "0x") means the user rejected the signing request
    txHash: str = ""


class FormComponent(BaseModel):
    id: str
    # Buttons carry no value; text inputs carry what was typed
    value: Optional[str] = None


class FormResponseRequest(BaseModel):
    userId: str
    channelId: str
    requestId: str
    threadId: Optional[str] = None
    components: List[FormComponent] = Field(default_factory=list)


class AckResponse(BaseModel):
    status: Literal["ok", "error"] = "ok"
    handled: bool = False
    detail: Dict[str, Any] = Field(default_factory=dict)
