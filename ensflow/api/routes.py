from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from ensflow.api.auth import require_api_key
from ensflow.api.schemas import (
    AckResponse,
    CommandRequest,
    FormResponseRequest,
    TransactionResponseRequest,
)
from ensflow.core.notify import FormAnswer
from ensflow.core.orchestrator import handle_command, handle_form_response, handle_transaction_response
from ensflow.store.models import ConversationRef

router = APIRouter(dependencies=[Depends(require_api_key)])


def _ack(out: dict) -> AckResponse:
    out = dict(out or {})
    handled = bool(out.pop("handled", False))
    return AckResponse(status="ok", handled=handled, detail=out)


def to_form_answer(req: FormResponseRequest) -> FormAnswer:
    """A button press arrives as a component without a value; text inputs carry values."""
    clicked = None
    values = {}
    for c in req.components:
        if c.value is None:
            clicked = clicked or c.id
        else:
            values[c.id] = c.value
    return FormAnswer(clicked=clicked, values=values)


@router.post("/commands", response_model=AckResponse)
async def post_command(body: CommandRequest):
    ref = ConversationRef(userId=body.userId, channelId=body.channelId, threadId=body.threadId)
    out = await run_in_threadpool(handle_command, ref, body.command, body.wallets)
    return _ack(out)


@router.post("/interactions/transaction", response_model=AckResponse)
async def post_transaction_response(body: TransactionResponseRequest):
    out = await run_in_threadpool(
        handle_transaction_response,
        body.userId,
        body.channelId,
        body.requestId,
        body.txHash,
        body.threadId,
    )
    return _ack(out)


@router.post("/interactions/form", response_model=AckResponse)
async def post_form_response(body: FormResponseRequest):
    out = await run_in_threadpool(
        handle_form_response,
        body.userId,
        body.channelId,
        body.requestId,
        to_form_answer(body),
        body.threadId,
    )
    return _ack(out)
