"""Read-only transaction history projection with running balances."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from loyalty_ledger.models.customer import Customer
from loyalty_ledger.models.loyalty import (
    REFERENCE_BY_CATEGORY,
    LedgerReferenceType,
    LoyaltyAccount,
    LoyaltyLedgerEntry,
    TransactionCategory,
)
from loyalty_ledger.services.loyalty.errors import InvalidInputError

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class TransactionFilter:
    """History query; without ``customer_id`` the listing spans every account."""

    customer_id: Optional[UUID] = None
    category: Optional[TransactionCategory] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0
    order: Literal["asc", "desc"] = "desc"

    def __post_init__(self) -> None:
        if not 1 <= self.limit <= MAX_PAGE_SIZE:
            raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if self.offset < 0:
            raise InvalidInputError("offset must not be negative")
        if self.order not in ("asc", "desc"):
            raise InvalidInputError("order must be 'asc' or 'desc'")
        if self.category is not None and not isinstance(self.category, TransactionCategory):
            try:
                object.__setattr__(self, "category", TransactionCategory(self.category))
            except ValueError as exc:
                raise InvalidInputError(f"Unknown transaction category: {self.category}") from exc
        if self.start_date and self.end_date and _as_utc(self.start_date) > _as_utc(self.end_date):
            raise InvalidInputError("startDate must not be after endDate")


@dataclass(frozen=True)
class TransactionItem:
    id: UUID
    account_id: UUID
    customer_id: UUID
    sequence: int
    points_delta: int
    category: TransactionCategory
    reference_type: LedgerReferenceType
    reference_id: str
    reason: str
    created_at: datetime
    running_balance_after: int


@dataclass(frozen=True)
class TransactionPage:
    items: list[TransactionItem]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


def empty_page(filters: TransactionFilter) -> TransactionPage:
    return TransactionPage(items=[], total=0, limit=filters.limit, offset=filters.offset)


async def list_ledger_transactions(
    session: AsyncSession,
    filters: TransactionFilter,
    *,
    account_id: UUID | None = None,
    tenant_id: UUID | None = None,
) -> TransactionPage:
    """Page through ledger entries, for one account or across all of them.

    Running balances are computed per account over its full ledger before any
    filter applies, so filtering never changes an entry's balance.
    """

    running_balance = (
        func.sum(LoyaltyLedgerEntry.points_delta)
        .over(
            partition_by=LoyaltyLedgerEntry.account_id,
            order_by=LoyaltyLedgerEntry.sequence,
        )
        .label("running_balance")
    )
    base = select(LoyaltyLedgerEntry, running_balance)
    if account_id is not None:
        base = base.where(LoyaltyLedgerEntry.account_id == account_id)
    elif tenant_id is not None:
        tenant_accounts = (
            select(LoyaltyAccount.id)
            .join(Customer, Customer.id == LoyaltyAccount.customer_id)
            .where(Customer.tenant_id == tenant_id)
        )
        base = base.where(LoyaltyLedgerEntry.account_id.in_(tenant_accounts))
    ledger = base.subquery("ledger_with_balance")
    entry = aliased(LoyaltyLedgerEntry, ledger)

    conditions = []
    if filters.category is not None:
        conditions.append(entry.reference_type == REFERENCE_BY_CATEGORY[filters.category])
    if filters.start_date is not None:
        conditions.append(entry.created_at >= _as_utc(filters.start_date))
    if filters.end_date is not None:
        conditions.append(entry.created_at <= _as_utc(filters.end_date))

    count_stmt = select(func.count()).select_from(ledger).where(*conditions)
    total = int((await session.execute(count_stmt)).scalar_one())
    if total == 0:
        return empty_page(filters)

    if filters.order == "asc":
        ordering = (entry.created_at.asc(), entry.sequence.asc(), entry.id.asc())
    else:
        ordering = (entry.created_at.desc(), entry.sequence.desc(), entry.id.desc())

    stmt = (
        select(entry, ledger.c.running_balance, LoyaltyAccount.customer_id)
        .select_from(entry)
        .join(LoyaltyAccount, LoyaltyAccount.id == entry.account_id)
        .where(*conditions)
        .order_by(*ordering)
        .limit(filters.limit)
        .offset(filters.offset)
    )
    result = await session.execute(stmt)
    items = [
        _to_item(row_entry, customer_id, balance) for row_entry, balance, customer_id in result.all()
    ]
    return TransactionPage(items=items, total=total, limit=filters.limit, offset=filters.offset)


def _to_item(entry: LoyaltyLedgerEntry, customer_id: UUID, running_balance: int) -> TransactionItem:
    reference_type = LedgerReferenceType(entry.reference_type)
    return TransactionItem(
        id=entry.id,
        account_id=entry.account_id,
        customer_id=customer_id,
        sequence=entry.sequence,
        points_delta=entry.points_delta,
        category=entry.category,
        reference_type=reference_type,
        reference_id=entry.reference_id,
        reason=entry.reason or "",
        created_at=_as_utc(entry.created_at),
        running_balance_after=int(running_balance),
    )


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "TransactionFilter",
    "TransactionItem",
    "TransactionPage",
    "empty_page",
    "list_ledger_transactions",
]
