"""
Parsed commands, as handed over by the natural-language layer.

A closed tagged union on `action`. A command missing a required field
arrives as `partial` so the dispatcher can ask for it instead of starting
a flow.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, Field, field_validator

from ensflow.utils.units import parse_eth


def normalize_name(value: str) -> str:
    name = (value or "").strip().lower()
    if name and "." not in name:
        name = f"{name}.eth"
    label = name.split(".", 1)[0]
    if len(label) < 3:
        raise ValueError("names need at least 3 characters before the dot")
    return name


EnsName = Annotated[str, AfterValidator(normalize_name)]


class RegisterCommand(BaseModel):
    action: Literal["register"] = "register"
    name: EnsName
    duration: Optional[int] = None


class RenewCommand(BaseModel):
    action: Literal["renew"] = "renew"
    name: EnsName
    duration: Optional[int] = None


class TransferCommand(BaseModel):
    action: Literal["transfer"] = "transfer"
    name: EnsName
    recipient: str


class SubdomainCommand(BaseModel):
    action: Literal["subdomain"] = "subdomain"
    parent: EnsName
    label: str
    resolveAddress: str
    recipient: Optional[str] = None


class BridgeCommand(BaseModel):
    action: Literal["bridge"] = "bridge"
    # ETH amount as a decimal string, e.g. "0.05"
    amount: str

    @field_validator("amount")
    @classmethod
    def _check_amount(cls, v: str) -> str:
        parse_eth(v)
        return v

    @property
    def amountWei(self) -> int:
        return parse_eth(self.amount)


class CancelCommand(BaseModel):
    action: Literal["cancel"] = "cancel"


class PartialCommand(BaseModel):
    action: Literal["partial"] = "partial"
    intended: Literal["register", "renew", "transfer", "subdomain", "bridge"]
    missing: List[str] = Field(default_factory=list)
    fields: Dict[str, Any] = Field(default_factory=dict)


Command = Annotated[
    Union[
        RegisterCommand,
        RenewCommand,
        TransferCommand,
        SubdomainCommand,
        BridgeCommand,
        CancelCommand,
        PartialCommand,
    ],
    Field(discriminator="action"),
]
