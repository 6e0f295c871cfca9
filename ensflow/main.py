from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse

from ensflow.api.admin_routes import router as admin_router
from ensflow.api.routes import router
from ensflow.observability.logging import log
from ensflow.settings import settings

app = FastAPI(title="ensflow")

app.include_router(router)
app.include_router(admin_router)


@app.get("/")
def root():
    return {"status": "ok", "message": "ensflow is running. POST parsed commands to /commands."}


@app.get("/health")
def health():
    return {"status": "ok"}


# The transport redelivers on non-2xx; a redelivered signing response must
# never be applied twice, so failures are acknowledged and logged instead.
@app.exception_handler(Exception)
async def universal_exception_handler(request: Request, exc: Exception):
    log(event="unhandled_exception", path=str(request.url.path), errorType=type(exc).__name__, error=str(exc)[:500])
    return JSONResponse(status_code=200, content={"status": "error", "handled": False, "detail": {}})


print(
    f"[boot] queue={settings.RQ_QUEUE_NAME} primaryChain={settings.PRIMARY_CHAIN_ID} "
    f"bridgeSource={settings.BRIDGE_SOURCE_CHAIN_ID} flowTtlSec={settings.FLOW_TTL_SEC}"
)
if not settings.FLOW_INTEGRITY_SECRET:
    print("[boot][WARN] FLOW_INTEGRITY_SECRET is empty; stored flows are not signed.")
if not settings.TRANSPORT_URL:
    print("[boot][WARN] TRANSPORT_URL is empty; no message or signing request can be delivered.")
