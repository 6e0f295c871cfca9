from decimal import Decimal, InvalidOperation, ROUND_DOWN

WEI_PER_ETH = 10**18
SECONDS_PER_YEAR = 31_536_000


def format_eth(wei: int, places: int = 6) -> str:
    """Render a wei amount as an ETH string, trimmed of trailing zeros."""
    q = Decimal(1).scaleb(-places)
    value = (Decimal(int(wei)) / Decimal(WEI_PER_ETH)).quantize(q, rounding=ROUND_DOWN)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def parse_eth(amount: str) -> int:
    """'0.05' -> 50000000000000000. Raises ValueError on garbage."""
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValueError(f"not an amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"not an amount: {amount!r}")
    if value <= 0:
        raise ValueError("amount must be positive")
    return int(value * WEI_PER_ETH)


def short_address(addr: str) -> str:
    if not addr or len(addr) < 12:
        return addr or ""
    return f"{addr[:6]}...{addr[-4:]}"


def same_address(a, b) -> bool:
    return bool(a) and bool(b) and str(a).lower() == str(b).lower()


def is_address(value) -> bool:
    s = str(value or "")
    if len(s) != 42 or not s.startswith("0x"):
        return False
    try:
        int(s[2:], 16)
    except ValueError:
        return False
    return True
