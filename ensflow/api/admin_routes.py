from fastapi import APIRouter, Depends, HTTPException

import ensflow.observability.metrics as metrics
from ensflow.api.auth import require_admin
from ensflow.core import lifecycle
from ensflow.store import flow_repo, interaction_repo

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/flows/{user_id}/{thread_id}")
def get_flow_snapshot(user_id: str, thread_id: str, _=Depends(require_admin)):
    """Stored flow plus its outstanding interaction requests."""
    flow = flow_repo.get(user_id, thread_id)
    if flow is None:
        raise HTTPException(status_code=404, detail="No flow for this key")
    data = dict(flow.data)
    # never expose the commitment secret
    if isinstance(data.get("commitment"), dict):
        data["commitment"] = {k: v for k, v in data["commitment"].items() if k != "secret"}
    return {
        "userId": flow.userId,
        "threadId": flow.threadId,
        "type": flow.type,
        "status": flow.status,
        "terminal": flow.is_terminal(),
        "createdAt": flow.createdAt,
        "updatedAt": flow.updatedAt,
        "data": data,
        "pendingRequests": interaction_repo.list_for_flow(flow_repo.flow_key(user_id, thread_id)),
    }


@router.get("/users/{user_id}/flows")
def list_active_flows(user_id: str, _=Depends(require_admin)):
    return [
        {"threadId": f.threadId, "type": f.type, "status": f.status, "updatedAt": f.updatedAt}
        for f in flow_repo.find_active_for_user(user_id)
    ]


@router.delete("/flows/{user_id}/{thread_id}")
def delete_flow(user_id: str, thread_id: str, _=Depends(require_admin)):
    existed = flow_repo.get(user_id, thread_id) is not None
    lifecycle.discard(user_id, thread_id)
    return {"status": "ok", "deleted": existed}


@router.get("/metrics")
def get_metrics(_=Depends(require_admin)):
    return metrics.get_flow_snapshot()


@router.delete("/users/{user_id}/flows")
def delete_user_flows(user_id: str, _=Depends(require_admin)):
    return {"status": "ok", "deleted": lifecycle.discard_all(user_id)}
