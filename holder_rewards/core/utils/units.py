from __future__ import annotations

from decimal import Decimal, InvalidOperation


def _to_decimal(value: str | int | float | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return Decimal(value)
    return Decimal(str(value).strip())


def from_erc20_raw(raw_amount: int | float | Decimal, decimals: int) -> Decimal:
    """Scale an on-chain integer amount to human token units."""
    if int(decimals) < 0:
        raise ValueError("decimals must be non-negative")
    try:
        amt = _to_decimal(raw_amount)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid raw amount: {raw_amount}") from exc
    return amt / (Decimal(10) ** int(decimals))


def round_usd(value: float | Decimal, places: int = 2) -> float:
    return float(_to_decimal(value).quantize(Decimal(1).scaleb(-places)))
