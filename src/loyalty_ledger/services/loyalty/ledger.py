"""Append-only ledger access and balance derivation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.models.loyalty import LedgerReferenceType, LoyaltyLedgerEntry


@dataclass(frozen=True)
class DerivedBalance:
    """Balance folded from an account's ledger entries."""

    current_balance: int
    lifetime_earned: int
    entry_count: int = 0
    last_sequence: int = 0


def fold_entries(deltas: Iterable[int]) -> DerivedBalance:
    """Fold signed point deltas in order into a ``DerivedBalance``.

    ``last_sequence`` equals the number of deltas, matching ledgers whose
    sequences start at 1 without gaps.
    """

    balance = 0
    lifetime = 0
    count = 0
    for delta in deltas:
        balance += delta
        if delta > 0:
            lifetime += delta
        count += 1
    return DerivedBalance(
        current_balance=balance,
        lifetime_earned=lifetime,
        entry_count=count,
        last_sequence=count,
    )


async def derive_balance(session: AsyncSession, account_id: UUID) -> DerivedBalance:
    """Load an account's deltas in sequence order and fold them."""

    stmt = (
        select(LoyaltyLedgerEntry.points_delta, LoyaltyLedgerEntry.sequence)
        .where(LoyaltyLedgerEntry.account_id == account_id)
        .order_by(LoyaltyLedgerEntry.sequence.asc())
    )
    rows: list[Tuple[int, int]] = [tuple(row) for row in (await session.execute(stmt)).all()]
    folded = fold_entries(delta for delta, _ in rows)
    last_sequence = rows[-1][1] if rows else 0
    return DerivedBalance(
        current_balance=folded.current_balance,
        lifetime_earned=folded.lifetime_earned,
        entry_count=folded.entry_count,
        last_sequence=last_sequence,
    )


async def find_reference_entry(
    session: AsyncSession,
    account_id: UUID,
    reference_type: LedgerReferenceType,
    reference_id: str,
) -> LoyaltyLedgerEntry | None:
    """Return the entry already recorded for a business reference, if any."""

    stmt = (
        select(LoyaltyLedgerEntry)
        .where(
            LoyaltyLedgerEntry.account_id == account_id,
            LoyaltyLedgerEntry.reference_type == reference_type,
            LoyaltyLedgerEntry.reference_id == reference_id,
        )
        .order_by(LoyaltyLedgerEntry.sequence.asc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def append_entry(
    session: AsyncSession,
    account_id: UUID,
    balance: DerivedBalance,
    *,
    points_delta: int,
    reference_type: LedgerReferenceType,
    reference_id: str,
    reason: str = "",
) -> LoyaltyLedgerEntry:
    """Stage the next ledger entry for an account; the caller commits."""

    if points_delta == 0:
        raise ValueError("Ledger entries require a non-zero points delta")

    entry = LoyaltyLedgerEntry(
        account_id=account_id,
        sequence=balance.last_sequence + 1,
        points_delta=points_delta,
        reference_type=reference_type,
        reference_id=str(reference_id)[:64],
        reason=reason or "",
    )
    session.add(entry)
    logger.debug(
        "Staged loyalty ledger entry",
        account_id=str(account_id),
        sequence=entry.sequence,
        points_delta=points_delta,
        reference_type=reference_type.value,
    )
    return entry


__all__ = ["DerivedBalance", "append_entry", "derive_balance", "find_reference_entry", "fold_entries"]
