import inspect
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from ensflow.core import state_machine as sm


def _filter_kwargs(cls, data: dict) -> dict:
    """
    Drop unknown fields so cls(**kwargs) never explodes on records
    written by an older build.
    """
    allowed = set(inspect.signature(cls).parameters.keys())
    return {k: v for k, v in (data or {}).items() if k in allowed}


@dataclass
class ConversationRef:
    userId: str
    channelId: str
    threadId: str


@dataclass
class Flow:
    userId: str
    threadId: str
    channelId: str
    type: str
    status: str
    data: Dict[str, Any] = field(default_factory=dict)
    createdAt: int = 0
    updatedAt: int = 0

    @property
    def ref(self) -> ConversationRef:
        return ConversationRef(userId=self.userId, channelId=self.channelId, threadId=self.threadId)

    def is_terminal(self) -> bool:
        return sm.is_terminal(self.type, self.status)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Flow":
        return cls(**_filter_kwargs(cls, data))


# --- Registration ---

@dataclass
class Commitment:
    name: str
    owner: str
    durationSec: int
    secret: str
    commitment: str
    domainPriceWei: int = 0


@dataclass
class RegistrationCosts:
    commitGasWei: int = 0
    registerGasWei: int = 0
    # register gas cannot be simulated before the commit lands
    isRegisterEstimate: bool = True


@dataclass
class WalletCandidate:
    address: str
    primaryWei: int = 0
    sourceWei: int = 0
    funding: str = ""


@dataclass
class RegistrationData:
    name: str = ""
    durationYears: Optional[int] = None
    wallets: List[str] = field(default_factory=list)
    commitment: Optional[Commitment] = None
    costs: RegistrationCosts = field(default_factory=RegistrationCosts)
    domainPriceWei: int = 0
    grandTotalWei: int = 0
    selectedWallet: Optional[str] = None
    walletCandidates: List[WalletCandidate] = field(default_factory=list)
    commitTxHash: Optional[str] = None
    commitSubmittedAtMs: int = 0
    commitUnminedAtMs: int = 0
    commitConfirmedAtMs: int = 0
    registerTxHash: Optional[str] = None
    currentStep: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "RegistrationData":
        data = _filter_kwargs(cls, data)
        if isinstance(data.get("commitment"), dict):
            data["commitment"] = Commitment(**_filter_kwargs(Commitment, data["commitment"]))
        if isinstance(data.get("costs"), dict):
            data["costs"] = RegistrationCosts(**_filter_kwargs(RegistrationCosts, data["costs"]))
        data["walletCandidates"] = [
            WalletCandidate(**_filter_kwargs(WalletCandidate, c)) if isinstance(c, dict) else c
            for c in data.get("walletCandidates") or []
        ]
        return cls(**data)

    def to_dict(self) -> dict:
        return asdict(self)


# --- Bridge ---

NEXT_NONE = "none"
NEXT_CONTINUE_REGISTRATION = "continue_registration"
NEXT_CONTINUE_RENEWAL = "continue_renewal"


@dataclass
class BridgeQuoteInfo:
    inputWei: int = 0
    outputWei: int = 0
    feeWei: int = 0
    fillTimeSec: int = 0


@dataclass
class BridgeData:
    sourceChainId: int = 0
    destChainId: int = 0
    requiredWei: int = 0
    inputWei: int = 0
    recipient: str = ""
    quote: BridgeQuoteInfo = field(default_factory=BridgeQuoteInfo)
    txRequestedAtMs: int = 0
    depositTxHash: Optional[str] = None
    depositId: Optional[str] = None
    fillTxHash: Optional[str] = None
    baselineBalanceWei: Optional[int] = None
    pollStartedAtMs: int = 0
    nextAction: str = NEXT_NONE
    parentData: Dict[str, Any] = field(default_factory=dict)
    bridgeStatus: str = sm.PENDING

    @classmethod
    def from_dict(cls, data: dict) -> "BridgeData":
        data = _filter_kwargs(cls, data)
        if isinstance(data.get("quote"), dict):
            data["quote"] = BridgeQuoteInfo(**_filter_kwargs(BridgeQuoteInfo, data["quote"]))
        return cls(**data)

    def to_dict(self) -> dict:
        return asdict(self)


# --- Subdomain ---

@dataclass
class SubdomainData:
    parent: str = ""
    label: str = ""
    fullName: str = ""
    resolveAddress: str = ""
    ownerWallet: str = ""
    recipient: str = ""
    isWrapped: bool = False
    step1TxHash: Optional[str] = None
    step2TxHash: Optional[str] = None
    step3TxHash: Optional[str] = None
    currentStep: int = 1
    totalSteps: int = 2

    @classmethod
    def from_dict(cls, data: dict) -> "SubdomainData":
        return cls(**_filter_kwargs(cls, data))

    def to_dict(self) -> dict:
        return asdict(self)


# --- Transfer ---

@dataclass
class TransferData:
    name: str = ""
    recipient: str = ""
    ownerWallet: str = ""
    isWrapped: bool = False
    contract: str = ""
    recipientIsContract: bool = False
    txHash: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TransferData":
        return cls(**_filter_kwargs(cls, data))

    def to_dict(self) -> dict:
        return asdict(self)


# --- Renew ---

@dataclass
class RenewData:
    name: str = ""
    durationYears: Optional[int] = None
    durationSec: int = 0
    wallets: List[str] = field(default_factory=list)
    totalCostWei: int = 0
    recommendedValueWei: int = 0
    currentExpiry: int = 0
    newExpiry: int = 0
    ownerWallet: str = ""
    isWrapped: bool = False
    txHash: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RenewData":
        return cls(**_filter_kwargs(cls, data))

    def to_dict(self) -> dict:
        return asdict(self)


# --- Correlation ---

@dataclass
class PendingInteraction:
    requestId: str
    kind: str
    expectedUserId: str
    flowKey: str
    step: int = 0
    createdAt: int = 0
