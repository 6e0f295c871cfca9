import time


def now_ms() -> int:
    return int(time.time() * 1000)


def elapsed_sec(since_ms: int) -> float:
    """Seconds elapsed since an epoch-ms timestamp (0 when unset)."""
    if not since_ms:
        return 0.0
    return max(0.0, (now_ms() - int(since_ms)) / 1000.0)
