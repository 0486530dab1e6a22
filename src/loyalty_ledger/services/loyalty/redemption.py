"""Redemption rules: amount validation, voucher valuation, and the voucher catalog."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional, Sequence

from loyalty_ledger.core.settings import settings
from loyalty_ledger.services.loyalty.errors import InvalidRedemptionAmountError

_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class RedemptionPolicy:
    """Conversion and catalog parameters for point redemptions."""

    increment: int = 100
    increment_value: Decimal = Decimal("1.00")
    validity_days: int = 90
    code_prefix: str = "LP"
    catalog_amounts: tuple[int, ...] = (100, 500, 1000, 2000, 5000)
    catalog_min_spend: Mapping[int, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.increment <= 0:
            raise ValueError("Redemption increment must be positive")
        if self.increment_value <= 0:
            raise ValueError("Increment value must be positive")
        if self.validity_days <= 0:
            raise ValueError("Voucher validity must be positive")

    @classmethod
    def from_settings(cls) -> "RedemptionPolicy":
        return cls(
            increment=settings.loyalty_redemption_increment,
            increment_value=Decimal(settings.loyalty_increment_value),
            validity_days=settings.loyalty_voucher_validity_days,
            code_prefix=settings.loyalty_voucher_code_prefix,
            catalog_amounts=tuple(settings.loyalty_catalog_amounts),
            catalog_min_spend=dict(settings.loyalty_catalog_min_spend),
        )

    def validate_amount(self, points: object) -> int:
        """Return ``points`` when it is a positive whole multiple of the increment."""

        if isinstance(points, bool) or not isinstance(points, int):
            raise InvalidRedemptionAmountError("Points to redeem must be a whole number")
        if points <= 0:
            raise InvalidRedemptionAmountError("Points to redeem must be positive")
        if points % self.increment != 0:
            raise InvalidRedemptionAmountError(
                f"Points must be redeemed in multiples of {self.increment}"
            )
        return points

    def voucher_value(self, points: int) -> Decimal:
        value = Decimal(points) / Decimal(self.increment) * self.increment_value
        return value.quantize(_CENTS, rounding=ROUND_HALF_UP)

    def min_spend_for(self, points: int) -> Optional[Decimal]:
        return self.catalog_min_spend.get(points)


@dataclass(frozen=True)
class CatalogItem:
    id: str
    name: str
    description: str
    points_cost: int
    voucher_value: Decimal
    voucher_type: str
    min_spend: Optional[Decimal]
    validity_days: int
    is_available: bool


@dataclass(frozen=True)
class RedemptionSuggestion:
    points: int
    voucher_value: Decimal


def build_catalog(policy: RedemptionPolicy, balance: Optional[int] = None) -> list[CatalogItem]:
    """List the fixed-value voucher options.

    Availability is judged against ``balance``; without a balance every
    option is reported as available.
    """

    items: list[CatalogItem] = []
    for points in policy.catalog_amounts:
        if points % policy.increment != 0:
            continue
        value = policy.voucher_value(points)
        min_spend = policy.min_spend_for(points)
        description = f"Redeem {points} points for a {_format_money(value)} voucher"
        if min_spend is not None:
            description += f" (min. spend {_format_money(min_spend)})"
        items.append(
            CatalogItem(
                id=f"voucher-{points}",
                name=f"{_format_money(value)} Voucher",
                description=description,
                points_cost=points,
                voucher_value=value,
                voucher_type="fixed",
                min_spend=min_spend,
                validity_days=policy.validity_days,
                is_available=balance is None or points <= balance,
            )
        )
    return items


def suggest_redemptions(
    balance: int,
    policy: RedemptionPolicy,
    amounts: Sequence[int] | None = None,
) -> list[RedemptionSuggestion]:
    """Catalog amounts the balance can currently cover, smallest first."""

    candidates = sorted(amounts if amounts is not None else policy.catalog_amounts)
    return [
        RedemptionSuggestion(points=points, voucher_value=policy.voucher_value(points))
        for points in candidates
        if 0 < points <= balance and points % policy.increment == 0
    ]


def _format_money(value: Decimal) -> str:
    if value == value.to_integral_value():
        return f"${int(value)}"
    return f"${value:.2f}"


__all__ = [
    "CatalogItem",
    "RedemptionPolicy",
    "RedemptionSuggestion",
    "build_catalog",
    "suggest_redemptions",
]
