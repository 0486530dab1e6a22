from uuid import uuid4

import pytest
from sqlalchemy import func, select

from loyalty_ledger.models import LedgerReferenceType, LoyaltyAccount, LoyaltyLedgerEntry
from loyalty_ledger.services.loyalty import DerivedBalance, derive_balance, fold_entries
from loyalty_ledger.services.loyalty.ledger import append_entry


def test_fold_sums_deltas_and_positive_lifetime() -> None:
    result = fold_entries([100, -40, 250, -300, 10])

    assert result.current_balance == 20
    assert result.lifetime_earned == 360
    assert result.entry_count == 5
    assert result.last_sequence == 5


def test_fold_of_empty_ledger() -> None:
    assert fold_entries([]) == DerivedBalance(current_balance=0, lifetime_earned=0)


def test_lifetime_never_decreases_when_debits_are_folded() -> None:
    deltas = [500, -200, -100, 50, -250]
    lifetimes = [fold_entries(deltas[: index + 1]).lifetime_earned for index in range(len(deltas))]

    assert lifetimes == sorted(lifetimes)


@pytest.mark.asyncio
async def test_derive_balance_reads_entries_in_sequence(session_factory) -> None:
    async with session_factory() as session:
        account = LoyaltyAccount(customer_id=uuid4())
        session.add(account)
        await session.flush()

        balance = await derive_balance(session, account.id)
        assert balance == DerivedBalance(current_balance=0, lifetime_earned=0)

        for delta in (300, -120, 45):
            append_entry(
                session,
                account.id,
                balance,
                points_delta=delta,
                reference_type=LedgerReferenceType.ADJUSTMENT,
                reference_id="system",
                reason="seed",
            )
            await session.flush()
            balance = await derive_balance(session, account.id)

        await session.commit()

    assert balance.current_balance == 225
    assert balance.lifetime_earned == 345
    assert balance.last_sequence == 3

    async with session_factory() as session:
        sequences = (
            await session.execute(
                select(LoyaltyLedgerEntry.sequence)
                .where(LoyaltyLedgerEntry.account_id == account.id)
                .order_by(LoyaltyLedgerEntry.sequence)
            )
        ).scalars().all()
        count = (await session.execute(select(func.count()).select_from(LoyaltyLedgerEntry))).scalar_one()

    assert sequences == [1, 2, 3]
    assert count == 3


@pytest.mark.asyncio
async def test_zero_delta_entries_are_refused(session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(ValueError):
            append_entry(
                session,
                uuid4(),
                DerivedBalance(current_balance=0, lifetime_earned=0),
                points_delta=0,
                reference_type=LedgerReferenceType.ADJUSTMENT,
                reference_id="system",
            )
