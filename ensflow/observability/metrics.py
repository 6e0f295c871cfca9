"""
Observability Metrics
---------------------
Redis counters per flow type and outcome, correlation rejections, and a
bounded list of bridge fill latencies. get_flow_snapshot() feeds
/admin/metrics; missing keys (first boot) read as zero.
"""
from __future__ import annotations
import time
from typing import List

from ensflow.core import state_machine as sm
from ensflow.store.redis_conn import get_redis

OUTCOMES = ("started", "completed", "failed", "cancelled")
REJECTION_REASONS = ("expired", "forbidden")

K_FLOW = "metrics:flows:{type}:{outcome}"          # INCR
K_CORR_REJECTED = "metrics:correlation:{reason}"   # INCR
K_BRIDGE_LAT = "metrics:bridge:fill_latencies"     # LPUSH ms

_MAX_SAMPLES = 500


def _percentile(data: List[float], p: float) -> float:
    """Nearest-rank percentile on sorted data."""
    if not data:
        return 0.0
    d = sorted(data)
    k = max(1, int(round(p * len(d))))
    return float(d[k - 1])


def increment_flow(flow_type: str, outcome: str) -> None:
    if outcome not in OUTCOMES:
        raise ValueError(f"unknown outcome: {outcome}")
    r = get_redis()
    r.incr(K_FLOW.format(type=flow_type, outcome=outcome), 1)


def increment_correlation_rejected(reason: str) -> None:
    r = get_redis()
    r.incr(K_CORR_REJECTED.format(reason=reason), 1)


def record_bridge_latency(ms: int) -> None:
    try:
        ms = int(ms)
    except (TypeError, ValueError):
        return
    r = get_redis()
    r.lpush(K_BRIDGE_LAT, ms)
    r.ltrim(K_BRIDGE_LAT, 0, _MAX_SAMPLES - 1)


def _read_latencies_s() -> List[float]:
    r = get_redis()
    out: List[float] = []
    for x in r.lrange(K_BRIDGE_LAT, 0, _MAX_SAMPLES - 1) or []:
        try:
            out.append(float(x) / 1000.0)
        except (TypeError, ValueError):
            continue
    return out


def get_flow_snapshot() -> dict:
    r = get_redis()
    flows = {}
    for flow_type in sm.FLOW_TYPES:
        flows[flow_type] = {
            outcome: int(r.get(K_FLOW.format(type=flow_type, outcome=outcome)) or 0)
            for outcome in OUTCOMES
        }

    rejected = {reason: int(r.get(K_CORR_REJECTED.format(reason=reason)) or 0) for reason in REJECTION_REASONS}

    lat = _read_latencies_s()
    return {
        "flows": flows,
        "correlation_rejected": rejected,
        "bridge_fill_samples": len(lat),
        "p50_bridge_fill_latency": round(_percentile(lat, 0.50), 3),
        "p95_bridge_fill_latency": round(_percentile(lat, 0.95), 3),
        "snapshot_at": int(time.time()),
    }
