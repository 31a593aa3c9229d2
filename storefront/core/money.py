"""Money helpers. Amounts are Decimals quantized to paise/cents."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Coerce a value to a non-negative money amount.

    Non-numeric, non-finite and non-positive values become zero.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return ZERO
    if not amount.is_finite() or amount <= 0:
        return ZERO
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(amount: Decimal) -> str:
    """Serialize an amount for storage."""
    return str(to_money(amount))
