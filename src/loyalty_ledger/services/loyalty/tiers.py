"""Tier classification over a configurable, threshold-ordered tier table."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from loyalty_ledger.core.settings import TierConfig
from loyalty_ledger.services.loyalty.errors import InvalidInputError


@dataclass(frozen=True)
class TierDefinition:
    name: str
    threshold: int
    multiplier: Decimal
    benefits: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class TierClassification:
    """Result of classifying a lifetime-earned total."""

    tier: TierDefinition
    next_tier: Optional[TierDefinition]
    points_to_next_tier: Optional[int]
    progress_percent: Decimal

    @property
    def name(self) -> str:
        return self.tier.name

    @property
    def multiplier(self) -> Decimal:
        return self.tier.multiplier


class TierTable:
    """Immutable, sorted tier table.

    A customer's tier is the highest tier whose threshold is at or below their
    lifetime-earned total. Thresholds must be unique and the lowest must be 0 so
    every non-negative total maps to exactly one tier.
    """

    def __init__(self, tiers: Iterable[TierDefinition]) -> None:
        ordered = sorted(tiers, key=lambda tier: tier.threshold)
        if not ordered:
            raise ValueError("Tier table requires at least one tier")
        if ordered[0].threshold != 0:
            raise ValueError("Lowest tier threshold must be 0")

        thresholds = [tier.threshold for tier in ordered]
        if len(set(thresholds)) != len(thresholds):
            raise ValueError("Tier thresholds must be unique")
        names = [tier.name for tier in ordered]
        if len(set(names)) != len(names):
            raise ValueError("Tier names must be unique")
        if any(tier.multiplier <= 0 for tier in ordered):
            raise ValueError("Tier multipliers must be positive")

        self._tiers: tuple[TierDefinition, ...] = tuple(ordered)
        self._thresholds: tuple[int, ...] = tuple(thresholds)

    @classmethod
    def from_config(cls, configs: Sequence[TierConfig]) -> "TierTable":
        return cls(
            TierDefinition(
                name=config.name,
                threshold=config.threshold,
                multiplier=Decimal(config.multiplier),
                benefits=tuple(config.benefits),
            )
            for config in configs
        )

    @property
    def tiers(self) -> tuple[TierDefinition, ...]:
        return self._tiers

    def classify(self, lifetime_earned: int) -> TierClassification:
        if lifetime_earned < 0:
            raise InvalidInputError("Lifetime earned points cannot be negative")

        index = bisect_right(self._thresholds, lifetime_earned) - 1
        current = self._tiers[index]
        upcoming = self._tiers[index + 1] if index + 1 < len(self._tiers) else None

        if upcoming is None:
            return TierClassification(
                tier=current,
                next_tier=None,
                points_to_next_tier=None,
                progress_percent=Decimal("100"),
            )

        band = Decimal(upcoming.threshold - current.threshold)
        progress = Decimal(lifetime_earned - current.threshold) / band * Decimal("100")
        progress = max(Decimal("0"), min(progress, Decimal("100")))
        return TierClassification(
            tier=current,
            next_tier=upcoming,
            points_to_next_tier=max(upcoming.threshold - lifetime_earned, 0),
            progress_percent=progress.quantize(Decimal("0.01")),
        )


__all__ = ["TierClassification", "TierDefinition", "TierTable"]
