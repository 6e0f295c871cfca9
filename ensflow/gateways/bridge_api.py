"""
Bridge provider client (Across).

/swap/approval returns both the quote and the ready-to-sign deposit
transaction for an exact input amount. /deposit/status reports whether a
relayer filled the deposit on the destination chain.
"""
from dataclasses import dataclass
from typing import Optional

import httpx

import ensflow.gateways.chain as chain
from ensflow.core.errors import ExternalServiceError
from ensflow.observability.logging import log
from ensflow.settings import settings

NATIVE_TOKEN = "0x0000000000000000000000000000000000000000"

# Error codes the provider uses for deposits below its relayer minimum
_TOO_LOW_CODES = {"AMOUNT_TOO_LOW", "AMOUNT_TOO_LOW_FOR_RELAYER", "INSUFFICIENT_AMOUNT"}

STATUS_FILLED = "filled"
STATUS_PENDING = "pending"
STATUS_EXPIRED = "expired"


@dataclass
class BridgeQuote:
    inputWei: int
    outputWei: int
    feeWei: int
    fillTimeSec: int = 0
    isAmountTooLow: bool = False
    minDepositWei: int = 0
    txTo: str = ""
    txData: str = ""
    txValueWei: int = 0


@dataclass
class DepositStatus:
    status: str
    fillTxHash: Optional[str] = None


def get_quote(amount_wei: int, depositor: str, recipient: str, origin_chain_id: int, dest_chain_id: int) -> BridgeQuote:
    params = {
        "tradeType": "exactInput",
        "amount": str(int(amount_wei)),
        "inputToken": settings.BRIDGE_INPUT_TOKEN,
        "outputToken": NATIVE_TOKEN,
        "originChainId": str(int(origin_chain_id)),
        "destinationChainId": str(int(dest_chain_id)),
        "depositor": depositor,
        "recipient": recipient,
    }
    min_deposit = int(settings.BRIDGE_MIN_AMOUNT_WEI)
    url = settings.BRIDGE_API_URL.rstrip("/") + "/swap/approval"
    try:
        with httpx.Client(timeout=settings.BRIDGE_TIMEOUT_SEC) as client:
            resp = client.get(url, params=params)
    except httpx.HTTPError as e:
        log(event="bridge_quote_exception", errorType=type(e).__name__, error=str(e)[:300])
        raise ExternalServiceError("bridge", str(e))

    if resp.status_code == 400:
        try:
            code = str((resp.json() or {}).get("code") or "")
        except ValueError:
            code = ""
        if code.upper() in _TOO_LOW_CODES:
            log(event="bridge_quote_too_low", amountWei=int(amount_wei), code=code)
            return BridgeQuote(
                inputWei=int(amount_wei),
                outputWei=0,
                feeWei=0,
                isAmountTooLow=True,
                minDepositWei=min_deposit,
            )

    if not (200 <= resp.status_code < 300):
        log(event="bridge_quote_failed", statusCode=int(resp.status_code), responseText=(resp.text or "")[:300])
        raise ExternalServiceError("bridge", f"quote HTTP {resp.status_code}")

    try:
        d = resp.json()
        input_wei = int(d["inputAmount"])
        output_wei = int(d["expectedOutputAmount"])
        swap_tx = d["swapTx"]
        quote = BridgeQuote(
            inputWei=input_wei,
            outputWei=output_wei,
            feeWei=max(0, input_wei - output_wei),
            fillTimeSec=int(d.get("expectedFillTime") or 0),
            isAmountTooLow=input_wei < min_deposit,
            minDepositWei=min_deposit,
            txTo=swap_tx["to"],
            txData=swap_tx["data"],
            txValueWei=int(swap_tx.get("value") or input_wei),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ExternalServiceError("bridge", f"malformed quote: {e}")

    log(
        event="bridge_quote_received",
        inputWei=quote.inputWei,
        outputWei=quote.outputWei,
        feeWei=quote.feeWei,
        fillTimeSec=quote.fillTimeSec,
    )
    return quote


def get_deposit_status(deposit_id: str, origin_chain_id: int) -> DepositStatus:
    url = settings.BRIDGE_API_URL.rstrip("/") + "/deposit/status"
    params = {"originChainId": str(int(origin_chain_id)), "depositId": str(deposit_id)}
    try:
        with httpx.Client(timeout=settings.BRIDGE_TIMEOUT_SEC) as client:
            resp = client.get(url, params=params)
        if resp.status_code == 404:
            # indexer has not seen the deposit yet
            return DepositStatus(status=STATUS_PENDING)
        resp.raise_for_status()
        d = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ExternalServiceError("bridge", f"deposit status: {e}")

    status = str(d.get("status") or STATUS_PENDING).lower()
    if status == "refunded":
        status = STATUS_EXPIRED
    elif status not in (STATUS_FILLED, STATUS_EXPIRED):
        status = STATUS_PENDING
    return DepositStatus(status=status, fillTxHash=d.get("fillTx") or None)


def extract_deposit_id(tx_hash: str, chain_id: int) -> Optional[str]:
    """
    Pull the deposit id out of the spoke pool's deposit event.
    The event indexes (destinationChainId, depositId, depositor), so the id is topics[2].
    Returns None when the receipt is not available yet or carries no such log.
    """
    try:
        receipt = chain.get_transaction_receipt(tx_hash, chain_id)
    except ExternalServiceError:
        return None
    if not receipt:
        return None

    spoke = settings.BRIDGE_SPOKE_POOL.lower()
    for entry in receipt.get("logs") or []:
        if str(entry.get("address", "")).lower() != spoke:
            continue
        topics = entry.get("topics") or []
        if len(topics) >= 3:
            try:
                return str(int(topics[2], 16))
            except (TypeError, ValueError):
                continue
    return None
