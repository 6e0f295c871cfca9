"""
Outbound sink to the messaging transport: plain messages, forms, and
transaction signing requests. Message wording is composed by the caller.
"""
from typing import List, Optional

import httpx

from ensflow.core.errors import ExternalServiceError
from ensflow.observability.logging import log
from ensflow.settings import settings


def _post(path: str, body: dict) -> None:
    if not settings.TRANSPORT_URL:
        raise ExternalServiceError("transport", "TRANSPORT_URL is not set")
    headers = {}
    if settings.TRANSPORT_API_KEY:
        headers["x-api-key"] = settings.TRANSPORT_API_KEY
    url = settings.TRANSPORT_URL.rstrip("/") + path
    try:
        with httpx.Client(timeout=settings.TRANSPORT_TIMEOUT_SEC) as client:
            resp = client.post(url, json=body, headers=headers)
    except httpx.HTTPError as e:
        log(event="transport_send_exception", path=path, errorType=type(e).__name__, error=str(e)[:300])
        raise ExternalServiceError("transport", str(e))
    if not (200 <= resp.status_code < 300):
        log(event="transport_send_failed", path=path, statusCode=int(resp.status_code), responseText=(resp.text or "")[:300])
        raise ExternalServiceError("transport", f"HTTP {resp.status_code}")


def send_message(channel_id: str, thread_id: str, text: str) -> None:
    _post("/messages", {"channelId": channel_id, "threadId": thread_id, "text": text})


def send_form(
    channel_id: str,
    thread_id: str,
    user_id: str,
    request_id: str,
    title: str,
    components: List[dict],
    subtitle: Optional[str] = None,
) -> None:
    _post(
        "/interactions/form",
        {
            "channelId": channel_id,
            "threadId": thread_id,
            "recipient": user_id,
            "requestId": request_id,
            "title": title,
            "subtitle": subtitle or "",
            "components": components,
        },
    )


def send_transaction(
    channel_id: str,
    thread_id: str,
    user_id: str,
    request_id: str,
    title: str,
    chain_id: int,
    to: str,
    data: str,
    value_wei: int,
    signer: str,
) -> None:
    _post(
        "/interactions/transaction",
        {
            "channelId": channel_id,
            "threadId": thread_id,
            "recipient": user_id,
            "requestId": request_id,
            "title": title,
            "tx": {
                "chainId": str(int(chain_id)),
                "to": to,
                "data": data,
                "value": hex(int(value_wei)),
                "signerWallet": signer,
            },
        },
    )
