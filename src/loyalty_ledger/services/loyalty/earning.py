"""Point award calculation for purchases."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from loyalty_ledger.services.loyalty.errors import InvalidInputError

Amount = Union[Decimal, int, float, str]


def to_amount(value: Amount, *, field_name: str = "amount") -> Decimal:
    """Coerce an incoming monetary value to a finite ``Decimal``."""

    if isinstance(value, bool):
        raise InvalidInputError(f"{field_name} must be a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInputError(f"{field_name} must be a number") from exc
    if not amount.is_finite():
        raise InvalidInputError(f"{field_name} must be a finite amount")
    return amount


def calculate_earned(
    order_subtotal: Amount,
    tier_multiplier: Amount = Decimal("1"),
    *,
    base_rate: Amount = Decimal("1"),
) -> int:
    """Return whole points for a subtotal: ``subtotal * base_rate * multiplier``, half-up."""

    subtotal = to_amount(order_subtotal, field_name="orderSubtotal")
    if subtotal < 0:
        raise InvalidInputError("orderSubtotal must not be negative")

    multiplier = to_amount(tier_multiplier, field_name="tierMultiplier")
    rate = to_amount(base_rate, field_name="baseRate")
    if multiplier <= 0 or rate < 0:
        raise InvalidInputError("Earning rate and tier multiplier must be positive")

    points = (subtotal * rate * multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(int(points), 0)


__all__ = ["calculate_earned", "to_amount"]
