"""
Flow Store
----------
One active multi-step operation per (userId, threadId), persisted in Redis.

Records are wrapped in an integrity envelope {d, s, t, v}: `s` is an
HMAC-SHA256 over "json(d)|t" keyed by FLOW_INTEGRITY_SECRET. A record whose
signature does not verify is deleted and reported as not-found.

Read-modify-write operations run inside a WATCH/MULTI transaction so two
writers racing on the same key cannot both apply a transition from the same
starting status.
"""
import hashlib
import hmac
import json
from typing import Callable, List, Optional

from redis.exceptions import WatchError

from ensflow.core import state_machine as sm
from ensflow.core.errors import AlreadyActive, FlowNotFound, IntegrityViolation, InvalidTransition
from ensflow.observability.logging import log
from ensflow.settings import settings
from ensflow.store.models import Flow
from ensflow.store.redis_conn import get_redis
from ensflow.utils.time import now_ms

PREFIX = "flow:"
USER_INDEX_PREFIX = "flows:user:"
ENVELOPE_VERSION = 1

_MAX_WATCH_RETRIES = 5
_warned_unsigned = False


def flow_key(user_id: str, thread_id: str) -> str:
    return f"{user_id}:{thread_id}"


def _key(user_id: str, thread_id: str) -> str:
    return f"{PREFIX}{flow_key(user_id, thread_id)}"


def _index_key(user_id: str) -> str:
    return f"{USER_INDEX_PREFIX}{user_id}"


def _canonical(d: dict) -> str:
    return json.dumps(d, sort_keys=True, separators=(",", ":"))


def _sign(body: str, t: int) -> str:
    global _warned_unsigned
    secret = settings.FLOW_INTEGRITY_SECRET
    if not secret:
        if not _warned_unsigned:
            log(event="flow_integrity_disabled", level="warning")
            _warned_unsigned = True
        return ""
    return hmac.new(secret.encode("utf-8"), f"{body}|{t}".encode("utf-8"), hashlib.sha256).hexdigest()


def _serialize(flow: Flow) -> str:
    d = flow.to_dict()
    t = now_ms()
    return json.dumps({"d": d, "s": _sign(_canonical(d), t), "t": t, "v": ENVELOPE_VERSION})


def _deserialize(raw: str) -> Flow:
    try:
        env = json.loads(raw)
    except (TypeError, ValueError):
        raise IntegrityViolation("flow record is not valid JSON")
    if not isinstance(env, dict) or env.get("v") != ENVELOPE_VERSION or "d" not in env:
        raise IntegrityViolation("flow record has no envelope")
    d = env.get("d") or {}
    expected = _sign(_canonical(d), int(env.get("t") or 0))
    if not hmac.compare_digest(expected, str(env.get("s") or "")):
        raise IntegrityViolation("flow record signature mismatch")
    return Flow.from_dict(d)


def _load(r, user_id: str, thread_id: str) -> Optional[Flow]:
    raw = r.get(_key(user_id, thread_id))
    if not raw:
        return None
    try:
        return _deserialize(raw)
    except IntegrityViolation as e:
        log(event="security_flow_tampered", userId=user_id, threadId=thread_id, error=str(e))
        get_redis().delete(_key(user_id, thread_id))
        return None


def _write(pipe, flow: Flow) -> None:
    ttl = int(settings.FLOW_TTL_SEC)
    pipe.set(_key(flow.userId, flow.threadId), _serialize(flow), ex=ttl)
    pipe.sadd(_index_key(flow.userId), flow.threadId)
    pipe.expire(_index_key(flow.userId), ttl)


def _transact(user_id: str, thread_id: str, fn: Callable[[Optional[Flow]], Optional[Flow]]) -> Optional[Flow]:
    """
    Run fn(current) under WATCH and persist whatever it returns.
    fn raising aborts the transaction without writing.
    """
    r = get_redis()
    key = _key(user_id, thread_id)
    for _ in range(_MAX_WATCH_RETRIES):
        with r.pipeline() as pipe:
            try:
                pipe.watch(key)
                current = _load(pipe, user_id, thread_id)
                updated = fn(current)
                pipe.multi()
                if updated is not None:
                    _write(pipe, updated)
                pipe.execute()
                return updated
            except WatchError:
                log(event="flow_write_conflict", userId=user_id, threadId=thread_id)
                continue
    raise WatchError(f"gave up writing {key} after {_MAX_WATCH_RETRIES} attempts")


def get(user_id: str, thread_id: str) -> Optional[Flow]:
    return _load(get_redis(), user_id, thread_id)


def create(flow: Flow) -> Flow:
    if flow.type not in sm.FLOW_TYPES:
        raise ValueError(f"unknown flow type: {flow.type}")
    if not sm.is_initial(flow.type, flow.status):
        raise InvalidTransition(flow.type, "<new>", flow.status)

    def _apply(current: Optional[Flow]) -> Flow:
        if current is not None and not current.is_terminal():
            raise AlreadyActive(flow.userId, flow.threadId, current.status)
        ts = now_ms()
        flow.createdAt = ts
        flow.updatedAt = ts
        return flow

    created = _transact(flow.userId, flow.threadId, _apply)
    log(event="flow_created", userId=flow.userId, threadId=flow.threadId, type=flow.type, status=flow.status)
    return created


def replace(user_id: str, thread_id: str, new_flow: Flow) -> Flow:
    """
    Swap whatever lives at the key for new_flow in one transaction.
    Used for the parent <-> bridge hand-off, where the parent must never
    coexist with its bridge.
    """
    previous = {}

    def _apply(current: Optional[Flow]) -> Flow:
        previous["type"] = current.type if current else None
        previous["status"] = current.status if current else None
        ts = now_ms()
        new_flow.createdAt = ts
        new_flow.updatedAt = ts
        return new_flow

    replaced = _transact(user_id, thread_id, _apply)
    log(
        event="flow_replaced",
        userId=user_id,
        threadId=thread_id,
        fromType=previous.get("type"),
        fromStatus=previous.get("status"),
        toType=new_flow.type,
        toStatus=new_flow.status,
    )
    return replaced


def update_data(user_id: str, thread_id: str, partial: dict) -> Flow:
    def _apply(current: Optional[Flow]) -> Flow:
        if current is None:
            raise FlowNotFound(flow_key(user_id, thread_id))
        current.data.update(partial or {})
        current.updatedAt = now_ms()
        return current

    return _transact(user_id, thread_id, _apply)


def claim(user_id: str, thread_id: str, field: str, value, expected: str) -> Optional[Flow]:
    """
    Set data[field] only if it is unset and the flow is still in `expected`.
    Returns the updated flow, or None when another caller got there first.
    """
    def _apply(current: Optional[Flow]) -> Optional[Flow]:
        if current is None or current.status != expected or current.data.get(field):
            return None
        current.data[field] = value
        current.updatedAt = now_ms()
        return current

    return _transact(user_id, thread_id, _apply)


def update_status(user_id: str, thread_id: str, status: str, expected: Optional[str] = None) -> Flow:
    """
    Move the flow to `status`. When `expected` is given the write only
    happens if the stored status still equals it.
    """
    previous = {}

    def _apply(current: Optional[Flow]) -> Flow:
        if current is None:
            raise FlowNotFound(flow_key(user_id, thread_id))
        if expected is not None and current.status != expected:
            raise InvalidTransition(current.type, current.status, status)
        if not sm.can_transition(current.type, current.status, status):
            raise InvalidTransition(current.type, current.status, status)
        previous["status"] = current.status
        current.status = status
        current.updatedAt = now_ms()
        return current

    updated = _transact(user_id, thread_id, _apply)
    log(
        event="flow_transition",
        userId=user_id,
        threadId=thread_id,
        type=updated.type,
        fromStatus=previous.get("status"),
        toStatus=status,
    )
    return updated


def clear(user_id: str, thread_id: str) -> None:
    r = get_redis()
    r.delete(_key(user_id, thread_id))
    r.srem(_index_key(user_id), thread_id)


def find_active_for_user(user_id: str) -> List[Flow]:
    r = get_redis()
    out: List[Flow] = []
    for thread_id in sorted(r.smembers(_index_key(user_id)) or []):
        flow = get(user_id, thread_id)
        if flow is None:
            # expired or tampered record, drop the dangling index entry
            r.srem(_index_key(user_id), thread_id)
            continue
        if not flow.is_terminal():
            out.append(flow)
    return out


def thread_ids(user_id: str) -> List[str]:
    return sorted(get_redis().smembers(_index_key(user_id)) or [])


def clear_all_for_user(user_id: str) -> int:
    r = get_redis()
    threads = thread_ids(user_id)
    for thread_id in threads:
        r.delete(_key(user_id, thread_id))
    r.delete(_index_key(user_id))
    return len(threads)
