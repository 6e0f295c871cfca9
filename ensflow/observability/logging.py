import json
import re
import time
from ensflow.settings import settings

# Never written to logs, regardless of redaction settings
SECRET_KEYS = {"secret", "calldata", "data", "signature"}

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def _short(addr: str) -> str:
    return f"{addr[:6]}...{addr[-4:]}"


def _redact_value(k, v):
    if k in SECRET_KEYS and isinstance(v, str) and len(v) > 0:
        return f"[REDACTED:{len(v)}chars]"
    if isinstance(v, dict):
        return {sk: _redact_value(sk, sv) for sk, sv in v.items()}
    if settings.ENABLE_ADDRESS_REDACTION:
        if isinstance(v, str) and _ADDRESS_RE.match(v):
            return _short(v)
        if isinstance(v, list):
            return [_short(x) if isinstance(x, str) and _ADDRESS_RE.match(x) else x for x in v]
    return v


def log(event: str, **fields):
    payload = {"ts": int(time.time()), "event": event}
    payload.update({k: _redact_value(k, v) for k, v in fields.items()})
    print(json.dumps(payload, ensure_ascii=False, default=str))
