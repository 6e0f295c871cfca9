"""
Name-registry oracle client.

Reads (availability, rent price, ownership, expiry) and calldata encoding are
delegated to the registry service at REGISTRY_API_URL; this module only maps
its JSON into typed results and its failures into ExternalServiceError.
Amounts come back as decimal strings of wei.
"""
from dataclasses import dataclass
from typing import List, Optional

import httpx

from ensflow.core.errors import ExternalServiceError
from ensflow.observability.logging import log
from ensflow.settings import settings

# Contract kinds used for ownership transfer
CONTRACT_REGISTRY = "registry"
CONTRACT_NAME_WRAPPER = "nameWrapper"
CONTRACT_REGISTRAR = "registrar"


@dataclass
class TxCall:
    to: str
    data: str
    valueWei: int = 0


@dataclass
class Availability:
    name: str
    available: bool
    owner: Optional[str] = None
    expiry: int = 0


@dataclass
class RegistrationCost:
    domainPriceWei: int
    commitGasWei: int
    registerGasWei: int
    grandTotalWei: int
    isRegisterEstimate: bool = True


@dataclass
class Ownership:
    owned: bool
    ownerWallet: Optional[str] = None
    isWrapped: bool = False
    actualOwner: Optional[str] = None


@dataclass
class RenewalQuote:
    ownerWallet: str
    isWrapped: bool
    durationSec: int
    totalCostWei: int
    recommendedValueWei: int
    currentExpiry: int
    newExpiry: int


def _request(method: str, path: str, *, params: Optional[dict] = None, body: Optional[dict] = None) -> dict:
    url = settings.REGISTRY_API_URL.rstrip("/") + path
    try:
        with httpx.Client(timeout=settings.REGISTRY_TIMEOUT_SEC) as client:
            resp = client.request(method, url, params=params, json=body)
        resp.raise_for_status()
        return resp.json()
    except (httpx.HTTPError, ValueError) as e:
        log(event="registry_error", path=path, errorType=type(e).__name__, error=str(e)[:300])
        raise ExternalServiceError("registry", f"{path}: {e}")


def _tx(payload: dict) -> TxCall:
    try:
        return TxCall(to=payload["to"], data=payload["data"], valueWei=int(payload.get("value") or 0))
    except (KeyError, TypeError, ValueError):
        raise ExternalServiceError("registry", f"malformed calldata response: {payload!r}"[:300])


def label_of(name: str) -> str:
    return name.split(".", 1)[0]


def transfer_contract(name: str, is_wrapped: bool) -> str:
    """Wrapped names move through the NameWrapper; unwrapped .eth 2LDs through the registrar."""
    if is_wrapped:
        return CONTRACT_NAME_WRAPPER
    parts = name.split(".")
    if len(parts) == 2 and parts[1] == "eth":
        return CONTRACT_REGISTRAR
    return CONTRACT_REGISTRY


# --- reads ---

def check_availability(name: str) -> Availability:
    d = _request("GET", f"/names/{name}/availability")
    return Availability(
        name=name,
        available=bool(d.get("available")),
        owner=d.get("owner") or None,
        expiry=int(d.get("expiry") or 0),
    )


def estimate_registration_cost(name: str, years: int, owner: Optional[str] = None) -> RegistrationCost:
    params = {"years": int(years)}
    if owner:
        params["owner"] = owner
    d = _request("GET", f"/names/{name}/price", params=params)
    return RegistrationCost(
        domainPriceWei=int(d["domainPriceWei"]),
        commitGasWei=int(d.get("commitGasWei") or 0),
        registerGasWei=int(d.get("registerGasWei") or 0),
        grandTotalWei=int(d["grandTotalWei"]),
        isRegisterEstimate=bool(d.get("isRegisterEstimate", True)),
    )


def make_commitment(name: str, owner: str, duration_sec: int, secret: str) -> str:
    d = _request(
        "POST",
        "/commitments",
        body={"label": label_of(name), "owner": owner, "durationSec": int(duration_sec), "secret": secret},
    )
    return str(d["commitment"])


def verify_ownership(name: str, wallets: List[str]) -> Ownership:
    d = _request("POST", "/ownership", body={"name": name, "wallets": list(wallets)})
    return Ownership(
        owned=bool(d.get("owned")),
        ownerWallet=d.get("ownerWallet") or None,
        isWrapped=bool(d.get("isWrapped")),
        actualOwner=d.get("actualOwner") or None,
    )


def subname_exists(full_name: str) -> bool:
    d = _request("GET", f"/names/{full_name}/exists")
    return bool(d.get("exists"))


def quote_renewal(name: str, years: int, wallets: List[str]) -> Optional[RenewalQuote]:
    """None when none of the wallets owns the name."""
    d = _request("POST", "/renewals/quote", body={"name": name, "years": int(years), "wallets": list(wallets)})
    if not d.get("ownerWallet"):
        return None
    return RenewalQuote(
        ownerWallet=d["ownerWallet"],
        isWrapped=bool(d.get("isWrapped")),
        durationSec=int(d["durationSec"]),
        totalCostWei=int(d["totalCostWei"]),
        recommendedValueWei=int(d.get("recommendedValueWei") or d["totalCostWei"]),
        currentExpiry=int(d.get("currentExpiry") or 0),
        newExpiry=int(d.get("newExpiry") or 0),
    )


# --- calldata ---

def encode_commit(commitment: str) -> TxCall:
    return _tx(_request("POST", "/calldata/commit", body={"commitment": commitment}))


def encode_register(name: str, owner: str, duration_sec: int, secret: str, value_wei: int) -> TxCall:
    return _tx(
        _request(
            "POST",
            "/calldata/register",
            body={
                "label": label_of(name),
                "owner": owner,
                "durationSec": int(duration_sec),
                "secret": secret,
                "value": str(int(value_wei)),
            },
        )
    )


def encode_renew(name: str, duration_sec: int, value_wei: int, is_wrapped: bool) -> TxCall:
    return _tx(
        _request(
            "POST",
            "/calldata/renew",
            body={"name": name, "durationSec": int(duration_sec), "value": str(int(value_wei)), "isWrapped": is_wrapped},
        )
    )


def encode_transfer(name: str, owner: str, recipient: str, contract: str) -> TxCall:
    return _tx(
        _request(
            "POST",
            "/calldata/transfer",
            body={"name": name, "from": owner, "to": recipient, "contract": contract},
        )
    )


def encode_subdomain_step(
    step: int,
    full_name: str,
    owner: str,
    resolve_address: str,
    recipient: str,
    is_wrapped: bool,
) -> TxCall:
    """
    step 1: create the subname owned by the parent owner
    step 2: point its address record at resolve_address
    step 3: hand the subname to recipient
    """
    return _tx(
        _request(
            "POST",
            "/calldata/subdomain",
            body={
                "step": int(step),
                "name": full_name,
                "owner": owner,
                "resolveAddress": resolve_address,
                "recipient": recipient,
                "isWrapped": is_wrapped,
            },
        )
    )
