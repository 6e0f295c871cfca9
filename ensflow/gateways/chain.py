"""JSON-RPC balance and receipt oracle for the primary and bridge-source chains."""
import itertools
from typing import Optional

import httpx

from ensflow.core.errors import ExternalServiceError
from ensflow.observability.logging import log
from ensflow.settings import settings

_ids = itertools.count(1)


def rpc_url(chain_id: int) -> str:
    chain_id = int(chain_id)
    if chain_id == int(settings.PRIMARY_CHAIN_ID):
        return settings.MAINNET_RPC_URL
    if chain_id == int(settings.BRIDGE_SOURCE_CHAIN_ID):
        return settings.BASE_RPC_URL
    raise ValueError(f"no RPC configured for chain {chain_id}")


def _rpc(chain_id: int, method: str, params: list):
    body = {"jsonrpc": "2.0", "id": next(_ids), "method": method, "params": params}
    try:
        with httpx.Client(timeout=settings.RPC_TIMEOUT_SEC) as client:
            resp = client.post(rpc_url(chain_id), json=body)
        resp.raise_for_status()
        payload = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        log(event="rpc_error", chainId=int(chain_id), method=method, errorType=type(e).__name__, error=str(e)[:300])
        raise ExternalServiceError("rpc", f"{method} on chain {chain_id}: {e}")

    if payload.get("error"):
        err = payload["error"]
        log(event="rpc_error", chainId=int(chain_id), method=method, error=str(err)[:300])
        raise ExternalServiceError("rpc", f"{method}: {err}")
    return payload.get("result")


def get_balance(address: str, chain_id: int) -> int:
    result = _rpc(chain_id, "eth_getBalance", [address, "latest"])
    try:
        return int(result, 16)
    except (TypeError, ValueError):
        raise ExternalServiceError("rpc", f"bad balance for {address}: {result!r}")


def get_transaction_receipt(tx_hash: str, chain_id: int) -> Optional[dict]:
    """Receipt dict, or None while the transaction is not yet mined."""
    return _rpc(chain_id, "eth_getTransactionReceipt", [tx_hash])


def receipt_succeeded(receipt: dict) -> bool:
    return str((receipt or {}).get("status", "")).lower() in ("0x1", "1")


def is_contract(address: str, chain_id: int) -> bool:
    code = _rpc(chain_id, "eth_getCode", [address, "latest"])
    return bool(code) and code not in ("0x", "0x0")
