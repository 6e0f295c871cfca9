from typing import Optional

from ensflow.settings import settings
from ensflow.store.models import PendingInteraction
from ensflow.store.redis_conn import get_redis

PREFIX = "interaction:"
FLOW_INDEX_PREFIX = "interactions:"


def _key(request_id: str) -> str:
    return f"{PREFIX}{request_id}"


def _index_key(flow_key: str) -> str:
    return f"{FLOW_INDEX_PREFIX}{flow_key}"


def save(record: PendingInteraction) -> None:
    r = get_redis()
    ttl = int(settings.INTERACTION_TTL_SEC)
    pipe = r.pipeline()
    pipe.hset(
        _key(record.requestId),
        mapping={
            "requestId": record.requestId,
            "kind": record.kind,
            "expectedUserId": record.expectedUserId,
            "flowKey": record.flowKey,
            "step": int(record.step),
            "createdAt": int(record.createdAt),
        },
    )
    pipe.expire(_key(record.requestId), ttl)
    pipe.sadd(_index_key(record.flowKey), record.requestId)
    pipe.expire(_index_key(record.flowKey), ttl)
    pipe.execute()


def get(request_id: str) -> Optional[PendingInteraction]:
    r = get_redis()
    h = r.hgetall(_key(request_id))
    if not h:
        return None
    return PendingInteraction(
        requestId=h.get("requestId", request_id),
        kind=h.get("kind", ""),
        expectedUserId=h.get("expectedUserId", ""),
        flowKey=h.get("flowKey", ""),
        step=int(h.get("step") or 0),
        createdAt=int(h.get("createdAt") or 0),
    )


def delete(request_id: str) -> bool:
    r = get_redis()
    rec = get(request_id)
    removed = bool(r.delete(_key(request_id)))
    if rec is not None:
        r.srem(_index_key(rec.flowKey), request_id)
    return removed


def delete_for_flow(flow_key: str) -> int:
    r = get_redis()
    ids = list(r.smembers(_index_key(flow_key)) or [])
    for request_id in ids:
        r.delete(_key(request_id))
    r.delete(_index_key(flow_key))
    return len(ids)


def list_for_flow(flow_key: str) -> list:
    r = get_redis()
    return sorted(r.smembers(_index_key(flow_key)) or [])
