"""
Balance & Funding Planner.

Reads native balances on the primary chain and the bridge-source chain and
decides how an operation costing `required_wei` on the primary chain gets
paid for. Pure decision logic: never touches a Flow and never caches a
balance across steps.
"""
from dataclasses import dataclass, field
from typing import List, Optional

import ensflow.gateways.chain as chain
from ensflow.observability.logging import log
from ensflow.settings import settings
from ensflow.store.models import WalletCandidate

DIRECT = "direct"
BRIDGEABLE = "bridgeable"
INSUFFICIENT = "insufficient"

# Planner actions
PROCEED = "proceed"
BRIDGE = "bridge"
SELECT_WALLET = "select_wallet"
NOT_FUNDED = "insufficient"
NO_WALLETS = "no_wallets"


@dataclass
class WalletBalance:
    address: str
    primaryWei: int
    sourceWei: int
    requiredWei: int
    bufferPct: int

    @property
    def bridgeThresholdWei(self) -> int:
        return bridge_threshold(self.requiredWei, self.bufferPct)

    @property
    def funding(self) -> str:
        if self.primaryWei >= self.requiredWei:
            return DIRECT
        if self.sourceWei >= self.bridgeThresholdWei:
            return BRIDGEABLE
        return INSUFFICIENT

    @property
    def shortfallWei(self) -> int:
        return max(0, self.requiredWei - self.primaryWei)

    def candidate(self) -> WalletCandidate:
        return WalletCandidate(
            address=self.address,
            primaryWei=self.primaryWei,
            sourceWei=self.sourceWei,
            funding=self.funding,
        )


@dataclass
class FundingDecision:
    action: str
    requiredWei: int
    selected: Optional[WalletBalance] = None
    options: List[WalletBalance] = field(default_factory=list)
    wallets: List[WalletBalance] = field(default_factory=list)


def bridge_threshold(required_wei: int, buffer_pct: int) -> int:
    return int(required_wei) * (100 + int(buffer_pct)) // 100


def check_wallet(address: str, required_wei: int, buffer_pct: Optional[int] = None) -> WalletBalance:
    if buffer_pct is None:
        buffer_pct = settings.BRIDGE_BUFFER_PCT
    return WalletBalance(
        address=address,
        primaryWei=chain.get_balance(address, settings.PRIMARY_CHAIN_ID),
        sourceWei=chain.get_balance(address, settings.BRIDGE_SOURCE_CHAIN_ID),
        requiredWei=int(required_wei),
        bufferPct=int(buffer_pct),
    )


def rank(wallets: List[WalletBalance]) -> List[WalletBalance]:
    """Usable wallets only: direct first, then by primary balance, then source balance."""
    usable = [w for w in wallets if w.funding != INSUFFICIENT]
    return sorted(usable, key=lambda w: (w.funding != DIRECT, -w.primaryWei, -w.sourceWei))


def plan_funding(required_wei: int, addresses: List[str], buffer_pct: Optional[int] = None) -> FundingDecision:
    if not addresses:
        return FundingDecision(action=NO_WALLETS, requiredWei=int(required_wei))

    wallets = [check_wallet(a, required_wei, buffer_pct) for a in addresses]

    if len(wallets) == 1:
        w = wallets[0]
        action = {DIRECT: PROCEED, BRIDGEABLE: BRIDGE}.get(w.funding, NOT_FUNDED)
        decision = FundingDecision(action=action, requiredWei=int(required_wei), selected=w, wallets=wallets)
    else:
        options = rank(wallets)
        action = SELECT_WALLET if options else NOT_FUNDED
        decision = FundingDecision(action=action, requiredWei=int(required_wei), options=options, wallets=wallets)

    log(
        event="funding_planned",
        action=decision.action,
        requiredWei=int(required_wei),
        wallets=[w.address for w in wallets],
        funding=[w.funding for w in wallets],
    )
    return decision


def filter_eoas(addresses: List[str]) -> List[str]:
    """Drop smart-contract accounts; they cannot sign the signing prompts."""
    seen = set()
    out = []
    for a in addresses or []:
        if not a or a.lower() in seen:
            continue
        seen.add(a.lower())
        if not chain.is_contract(a, settings.PRIMARY_CHAIN_ID):
            out.append(a)
    return out
