import datetime as dt
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from loyalty_ledger.models import LedgerReferenceType, LoyaltyAccount, LoyaltyLedgerEntry, Voucher
from loyalty_ledger.observability.ledger import get_ledger_store
from loyalty_ledger.services.loyalty import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidInputError,
    InvalidRedemptionAmountError,
    LoyaltyLedgerService,
    TransactionFilter,
    TransientStoreError,
    WouldOverdrawError,
)


async def _seed_balance(session_factory, customer_id, points: int) -> None:
    async with session_factory() as session:
        await LoyaltyLedgerService(session).adjust(customer_id, points, "opening balance")


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_first_earn_creates_account_at_bronze(session_factory, make_customer) -> None:
    customer = await make_customer()

    async with session_factory() as session:
        result = await LoyaltyLedgerService(session).earn(customer.id, "order-1", Decimal("100"))

    assert result.points_earned == 100
    assert result.new_balance == 100
    assert result.tier == "bronze"
    assert result.tier_multiplier == Decimal("1.0")
    assert result.duplicate is False
    assert await _count(session_factory, LoyaltyAccount) == 1

    async with session_factory() as session:
        entry = (await session.execute(select(LoyaltyLedgerEntry))).scalar_one()
    assert entry.reference_type == LedgerReferenceType.ORDER
    assert entry.reference_id == "order-1"
    assert entry.sequence == 1


@pytest.mark.asyncio
async def test_reaching_silver_threshold_applies_higher_multiplier(session_factory, make_customer) -> None:
    customer = await make_customer()

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        for index in range(50):
            result = await service.earn(customer.id, f"order-{index}", Decimal("100"))
            assert result.tier == "bronze"

        account = await service.get_account(customer.id)
        assert account.lifetime_earned == 5_000
        assert account.tier == "silver"
        assert account.tier_multiplier == Decimal("1.25")
        assert account.next_tier == "gold"
        assert account.points_to_next_tier == 15_000

        followup = await service.earn(customer.id, "order-silver", Decimal("100"))

    assert followup.points_earned == 125
    assert followup.tier == "silver"
    assert followup.new_balance == 5_125


@pytest.mark.asyncio
async def test_redeem_more_than_balance_is_declined(session_factory, make_customer) -> None:
    customer = await make_customer()
    await _seed_balance(session_factory, customer.id, 250)

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        with pytest.raises(InsufficientBalanceError) as excinfo:
            await service.redeem(customer.id, 300)

        assert excinfo.value.balance == 250
        assert excinfo.value.requested == 300
        assert "Balance: 250" in excinfo.value.message
        account = await service.get_account(customer.id)

    assert account.balance == 250
    assert await _count(session_factory, Voucher) == 0
    assert await _count(session_factory, LoyaltyLedgerEntry) == 1


@pytest.mark.asyncio
async def test_redeem_mints_voucher_and_debits_atomically(session_factory, make_customer) -> None:
    customer = await make_customer()
    await _seed_balance(session_factory, customer.id, 500)

    async with session_factory() as session:
        result = await LoyaltyLedgerService(session).redeem(customer.id, 200, notes="Holiday treat")

    assert result.new_balance == 300
    assert result.points_redeemed == 200
    assert result.voucher.value == Decimal("2.00")
    assert result.voucher.code.startswith("LP")
    assert (result.voucher.valid_until - result.voucher.valid_from) == dt.timedelta(days=90)

    async with session_factory() as session:
        voucher = (await session.execute(select(Voucher))).scalar_one()
        debit = (
            await session.execute(
                select(LoyaltyLedgerEntry).where(
                    LoyaltyLedgerEntry.reference_type == LedgerReferenceType.VOUCHER_REDEMPTION
                )
            )
        ).scalar_one()
        account = await LoyaltyLedgerService(session).get_account(customer.id)

    assert voucher.id == result.voucher.id
    assert voucher.customer_id == customer.id
    assert voucher.kind == "fixed"
    assert voucher.amount == Decimal("2.00")
    assert voucher.usage_limit == 1
    assert voucher.usage_per_customer == 1
    assert voucher.is_active is True
    assert debit.id == result.ledger_entry_id
    assert debit.points_delta == -200
    assert debit.reference_id == str(voucher.id)
    assert debit.reason == "Holiday treat"
    assert account.balance == 300
    assert account.lifetime_earned == 500


@pytest.mark.asyncio
async def test_invalid_redemption_amount_writes_nothing(session_factory, make_customer) -> None:
    customer = await make_customer()
    await _seed_balance(session_factory, customer.id, 1_000)

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        with pytest.raises(InvalidRedemptionAmountError):
            await service.redeem(customer.id, 150)
        with pytest.raises(InvalidRedemptionAmountError):
            await service.redeem(customer.id, 0)

    assert await _count(session_factory, Voucher) == 0
    assert await _count(session_factory, LoyaltyLedgerEntry) == 1


@pytest.mark.asyncio
async def test_adjustment_that_would_overdraw_is_declined(session_factory, make_customer) -> None:
    customer = await make_customer()
    await _seed_balance(session_factory, customer.id, 50)

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        with pytest.raises(WouldOverdrawError):
            await service.adjust(customer.id, -100, "correction")
        account = await service.get_account(customer.id)

    assert account.balance == 50
    assert await _count(session_factory, LoyaltyLedgerEntry) == 1


@pytest.mark.asyncio
async def test_adjustment_validation(session_factory, make_customer) -> None:
    customer = await make_customer()

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        with pytest.raises(InvalidInputError):
            await service.adjust(customer.id, 100, "   ")
        with pytest.raises(InvalidInputError):
            await service.adjust(customer.id, 0, "nothing to do")

    assert await _count(session_factory, LoyaltyLedgerEntry) == 0


@pytest.mark.asyncio
async def test_positive_adjustment_counts_towards_tier(session_factory, make_customer) -> None:
    customer = await make_customer()

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        result = await service.adjust(customer.id, 20_000, "migration from legacy program", adjusted_by="ops-7")
        negative = await service.adjust(customer.id, -500, "clawback")

    assert result.tier == "gold"
    assert result.adjusted_by == "ops-7"
    assert negative.new_balance == 19_500
    assert negative.lifetime_earned == 20_000
    assert negative.adjusted_by == "system"

    async with session_factory() as session:
        entries = (
            await session.execute(select(LoyaltyLedgerEntry).order_by(LoyaltyLedgerEntry.sequence))
        ).scalars().all()
    assert [entry.reference_id for entry in entries] == ["ops-7", "system"]


@pytest.mark.asyncio
async def test_repeated_order_is_credited_once(session_factory, make_customer) -> None:
    customer = await make_customer()

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        first = await service.earn(customer.id, "order-42", Decimal("80"))
        second = await service.earn(customer.id, "order-42", Decimal("80"))

    assert first.duplicate is False
    assert second.duplicate is True
    assert second.points_earned == 80
    assert second.ledger_entry_id == first.ledger_entry_id
    assert second.new_balance == 80
    assert await _count(session_factory, LoyaltyLedgerEntry) == 1


@pytest.mark.asyncio
async def test_zero_point_earn_records_nothing(session_factory, make_customer) -> None:
    customer = await make_customer()

    async with session_factory() as session:
        result = await LoyaltyLedgerService(session).earn(customer.id, "free-sample", Decimal("0.20"))

    assert result.points_earned == 0
    assert result.ledger_entry_id is None
    assert await _count(session_factory, LoyaltyLedgerEntry) == 0


@pytest.mark.asyncio
async def test_negative_subtotal_is_invalid(session_factory, make_customer) -> None:
    customer = await make_customer()

    async with session_factory() as session:
        with pytest.raises(InvalidInputError):
            await LoyaltyLedgerService(session).earn(customer.id, "order-x", Decimal("-1"))

    assert await _count(session_factory, LoyaltyLedgerEntry) == 0


@pytest.mark.asyncio
async def test_unknown_customer_is_rejected(session_factory) -> None:
    stranger = uuid4()

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        with pytest.raises(AccountNotFoundError):
            await service.get_account(stranger)
        with pytest.raises(AccountNotFoundError):
            await service.earn(stranger, "order-1", Decimal("10"))
        with pytest.raises(AccountNotFoundError):
            await service.adjust(stranger, 10, "goodwill")
        page = await service.list_transactions(TransactionFilter(customer_id=stranger))

    assert page.items == []
    assert page.total == 0
    assert await _count(session_factory, LoyaltyAccount) == 0


@pytest.mark.asyncio
async def test_tenant_mismatch_is_treated_as_unknown(session_factory, make_customer) -> None:
    tenant_id = uuid4()
    customer = await make_customer(tenant_id=tenant_id)

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        summary = await service.get_account(customer.id, tenant_id=tenant_id)
        with pytest.raises(AccountNotFoundError):
            await service.get_account(customer.id, tenant_id=uuid4())

    assert summary.balance == 0


@pytest.mark.asyncio
async def test_voucher_failure_leaves_no_debit(session_factory, make_customer) -> None:
    customer = await make_customer()
    await _seed_balance(session_factory, customer.id, 500)

    class FailingMinter:
        async def mint(self, request):
            raise OperationalError("INSERT INTO loyalty_vouchers", {}, Exception("disk I/O error"))

    async with session_factory() as session:
        service = LoyaltyLedgerService(session, voucher_minter=FailingMinter())
        with pytest.raises(TransientStoreError) as excinfo:
            await service.redeem(customer.id, 200)

    assert "disk I/O" not in excinfo.value.message
    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert await _count(session_factory, Voucher) == 0
    assert await _count(session_factory, LoyaltyLedgerEntry) == 1


@pytest.mark.asyncio
async def test_commit_failure_discards_voucher_and_debit(session_factory, make_customer, monkeypatch) -> None:
    customer = await make_customer()
    await _seed_balance(session_factory, customer.id, 500)

    async with session_factory() as session:

        async def failing_commit() -> None:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(session, "commit", failing_commit)
        with pytest.raises(TransientStoreError):
            await LoyaltyLedgerService(session).redeem(customer.id, 200)

    assert await _count(session_factory, Voucher) == 0
    assert await _count(session_factory, LoyaltyLedgerEntry) == 1
    assert get_ledger_store().snapshot().operations["redeem:transient_store_error"] == 1


@pytest.mark.asyncio
async def test_birthday_bonus_is_awarded_once_per_year(session_factory, make_customer) -> None:
    customer = await make_customer(birth_date=dt.date(1990, 3, 14))

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        first = await service.award_birthday_bonus(customer.id, on=dt.date(2026, 3, 14))
        repeat = await service.award_birthday_bonus(customer.id, on=dt.date(2026, 3, 14))
        next_year = await service.award_birthday_bonus(customer.id, bonus_points=250, on=dt.date(2027, 3, 14))
        with pytest.raises(InvalidInputError):
            await service.award_birthday_bonus(customer.id, bonus_points=0, on=dt.date(2028, 3, 14))

    assert first.points_awarded == 100
    assert first.duplicate is False
    assert repeat.duplicate is True
    assert repeat.new_balance == 100
    assert next_year.points_awarded == 250
    assert next_year.new_balance == 350

    async with session_factory() as session:
        references = (
            await session.execute(
                select(LoyaltyLedgerEntry.reference_id).order_by(LoyaltyLedgerEntry.sequence)
            )
        ).scalars().all()
    assert references == ["birthday-2026", "birthday-2027"]


@pytest.mark.asyncio
async def test_birthday_bonus_requires_the_customers_birthday(session_factory, make_customer) -> None:
    customer = await make_customer(birth_date=dt.date(1990, 1, 1))
    no_birthday = await make_customer()

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        with pytest.raises(InvalidInputError):
            await service.award_birthday_bonus(customer.id, on=dt.date(2026, 3, 14))
        with pytest.raises(InvalidInputError):
            await service.award_birthday_bonus(no_birthday.id, on=dt.date(2026, 3, 14))

    assert await _count(session_factory, LoyaltyLedgerEntry) == 0
    assert get_ledger_store().snapshot().operations["birthday_bonus:invalid_input"] == 2


@pytest.mark.asyncio
async def test_leap_day_birthday_is_honoured_in_common_years(session_factory, make_customer) -> None:
    customer = await make_customer(birth_date=dt.date(2000, 2, 29))

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        common_year = await service.award_birthday_bonus(customer.id, on=dt.date(2027, 2, 28))
        leap_year = await service.award_birthday_bonus(customer.id, on=dt.date(2028, 2, 29))
        with pytest.raises(InvalidInputError):
            await service.award_birthday_bonus(customer.id, on=dt.date(2028, 2, 28))

    assert common_year.points_awarded == 100
    assert leap_year.new_balance == 200


@pytest.mark.asyncio
async def test_account_summary_includes_customer(session_factory, make_customer) -> None:
    customer = await make_customer(email="ada@example.com", display_name="Ada Lovelace")

    async with session_factory() as session:
        summary = await LoyaltyLedgerService(session).get_account(customer.id)

    assert summary.customer is not None
    assert summary.customer.id == customer.id
    assert summary.customer.name == "Ada Lovelace"
    assert summary.customer.email == "ada@example.com"


@pytest.mark.asyncio
async def test_reads_are_repeatable(session_factory, make_customer) -> None:
    customer = await make_customer()
    await _seed_balance(session_factory, customer.id, 700)

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        await service.redeem(customer.id, 300)
        first_account = await service.get_account(customer.id)
        second_account = await service.get_account(customer.id)
        first_page = await service.list_transactions(TransactionFilter(customer_id=customer.id))
        second_page = await service.list_transactions(TransactionFilter(customer_id=customer.id))

    assert first_account == second_account
    assert first_page == second_page
    assert await _count(session_factory, LoyaltyLedgerEntry) == 2


@pytest.mark.asyncio
async def test_catalog_reflects_customer_balance(session_factory, make_customer) -> None:
    customer = await make_customer()
    await _seed_balance(session_factory, customer.id, 1_200)

    async with session_factory() as session:
        catalog = await LoyaltyLedgerService(session).redemption_catalog(customer.id)

    assert catalog.balance == 1_200
    assert [item.points for item in catalog.suggestions] == [100, 500, 1000]
    available = {item.points_cost for item in catalog.items if item.is_available}
    assert available == {100, 500, 1000}


@pytest.mark.asyncio
async def test_outcomes_are_recorded(session_factory, make_customer) -> None:
    customer = await make_customer()

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        await service.earn(customer.id, "order-1", Decimal("300"))
        await service.redeem(customer.id, 200)
        with pytest.raises(InsufficientBalanceError):
            await service.redeem(customer.id, 200)

    snapshot = get_ledger_store().snapshot()
    assert snapshot.operations["earn:success"] == 1
    assert snapshot.operations["redeem:success"] == 1
    assert snapshot.operations["redeem:insufficient_balance"] == 1
    assert snapshot.points == {"earned": 300, "redeemed": 200}
