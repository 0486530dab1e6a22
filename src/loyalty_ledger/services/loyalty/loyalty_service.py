"""Service layer for loyalty point movements, tiers, and redemptions."""

from __future__ import annotations

import calendar
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.core.settings import settings
from loyalty_ledger.models.loyalty import LedgerReferenceType, LoyaltyAccount
from loyalty_ledger.observability.ledger import LedgerObservabilityStore, get_ledger_store
from loyalty_ledger.observability.tracing import get_tracer
from loyalty_ledger.services.loyalty.accounts import AccountResolver
from loyalty_ledger.services.loyalty.earning import calculate_earned, to_amount
from loyalty_ledger.services.loyalty.errors import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidInputError,
    LoyaltyLedgerError,
    TransientStoreError,
    WouldOverdrawError,
)
from loyalty_ledger.services.loyalty.history import (
    TransactionFilter,
    TransactionPage,
    empty_page,
    list_ledger_transactions,
)
from loyalty_ledger.services.loyalty.identity import CustomerDirectory, CustomerProfile, SqlCustomerDirectory
from loyalty_ledger.services.loyalty.ledger import (
    DerivedBalance,
    append_entry,
    derive_balance,
    find_reference_entry,
)
from loyalty_ledger.services.loyalty.redemption import (
    CatalogItem,
    RedemptionPolicy,
    RedemptionSuggestion,
    build_catalog,
    suggest_redemptions,
)
from loyalty_ledger.services.loyalty.tiers import TierTable
from loyalty_ledger.services.loyalty.vouchers import SqlVoucherMinter, VoucherMinter, VoucherRequest

SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class AccountSummary:
    """Derived view of a customer's loyalty standing."""

    customer_id: UUID
    account_id: UUID
    balance: int
    lifetime_earned: int
    tier: str
    tier_multiplier: Decimal
    next_tier: Optional[str]
    points_to_next_tier: Optional[int]
    progress_percent: Decimal
    benefits: list[str] = field(default_factory=list)
    customer: Optional[CustomerProfile] = None


@dataclass(frozen=True)
class EarnResult:
    customer_id: UUID
    order_id: str
    points_earned: int
    new_balance: int
    tier: str
    tier_multiplier: Decimal
    ledger_entry_id: Optional[UUID]
    duplicate: bool = False


@dataclass(frozen=True)
class IssuedVoucher:
    id: UUID
    code: str
    value: Decimal
    valid_from: datetime
    valid_until: datetime
    min_spend: Optional[Decimal] = None


@dataclass(frozen=True)
class RedeemResult:
    customer_id: UUID
    voucher: IssuedVoucher
    points_redeemed: int
    new_balance: int
    ledger_entry_id: UUID


@dataclass(frozen=True)
class AdjustResult:
    customer_id: UUID
    points_delta: int
    new_balance: int
    lifetime_earned: int
    tier: str
    ledger_entry_id: UUID
    adjusted_by: str


@dataclass(frozen=True)
class BirthdayBonusResult:
    customer_id: UUID
    points_awarded: int
    new_balance: int
    ledger_entry_id: UUID
    duplicate: bool = False


@dataclass(frozen=True)
class RedemptionCatalog:
    items: list[CatalogItem]
    balance: Optional[int]
    suggestions: list[RedemptionSuggestion]


class LoyaltyLedgerService:
    """Coordinate ledger writes and derived reads for loyalty accounts.

    Every mutation derives the balance and validates inside the transaction
    that writes, with the account row locked. Business rule violations roll
    back and raise before anything is written; storage failures surface as
    ``TransientStoreError``. Nothing is retried here.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        customers: CustomerDirectory | None = None,
        voucher_minter: VoucherMinter | None = None,
        tiers: TierTable | None = None,
        policy: RedemptionPolicy | None = None,
        base_earn_rate: Decimal | None = None,
        birthday_bonus_points: int | None = None,
        observability: LedgerObservabilityStore | None = None,
    ) -> None:
        self._db = session
        self._customers = customers or SqlCustomerDirectory(session)
        self._vouchers = voucher_minter or SqlVoucherMinter(session)
        self._tiers = tiers or TierTable.from_config(settings.loyalty_tiers)
        self._policy = policy or RedemptionPolicy.from_settings()
        self._base_rate = Decimal(
            base_earn_rate if base_earn_rate is not None else settings.loyalty_base_earn_rate
        )
        self._birthday_points = (
            birthday_bonus_points
            if birthday_bonus_points is not None
            else settings.loyalty_birthday_bonus_points
        )
        self._accounts = AccountResolver(session)
        self._observability = observability or get_ledger_store()
        self._tracer = get_tracer()

    async def earn(
        self,
        customer_id: UUID,
        order_id: str,
        order_subtotal: Decimal | int | float | str,
        *,
        description: str | None = None,
        tenant_id: UUID | None = None,
    ) -> EarnResult:
        """Credit points for an order, once per order id."""

        try:
            order_ref, subtotal = _validate_order(order_id, order_subtotal)
        except InvalidInputError as exc:
            self._observability.record_outcome("earn", exc.kind)
            raise

        with self._tracer.start_as_current_span("loyalty.earn"):
            async with self._transaction("earn"):
                account = await self._locked_account(customer_id, tenant_id)
                balance = await derive_balance(self._db, account.id)
                classification = self._tiers.classify(balance.lifetime_earned)

                prior = await find_reference_entry(
                    self._db, account.id, LedgerReferenceType.ORDER, order_ref
                )
                if prior is not None:
                    logger.info(
                        "Duplicate loyalty earn ignored",
                        customer_id=str(customer_id),
                        order_id=order_ref,
                        ledger_entry_id=str(prior.id),
                    )
                    self._observability.record_outcome("earn", "duplicate")
                    return EarnResult(
                        customer_id=customer_id,
                        order_id=order_ref,
                        points_earned=prior.points_delta,
                        new_balance=balance.current_balance,
                        tier=classification.name,
                        tier_multiplier=classification.multiplier,
                        ledger_entry_id=prior.id,
                        duplicate=True,
                    )

                points = calculate_earned(
                    subtotal, classification.multiplier, base_rate=self._base_rate
                )
                entry_id: UUID | None = None
                if points > 0:
                    entry = append_entry(
                        self._db,
                        account.id,
                        balance,
                        points_delta=points,
                        reference_type=LedgerReferenceType.ORDER,
                        reference_id=order_ref,
                        reason=description or f"Points earned from order {order_ref}",
                    )
                    await self._db.flush()
                    entry_id = entry.id

            self._observability.record_outcome("earn", "success")
            self._observability.record_points("earned", points)
            logger.info(
                "Recorded loyalty earn",
                customer_id=str(customer_id),
                order_id=order_ref,
                points=points,
                tier=classification.name,
            )
            return EarnResult(
                customer_id=customer_id,
                order_id=order_ref,
                points_earned=points,
                new_balance=balance.current_balance + points,
                tier=classification.name,
                tier_multiplier=classification.multiplier,
                ledger_entry_id=entry_id,
            )

    async def redeem(
        self,
        customer_id: UUID,
        points_to_redeem: int,
        *,
        notes: str | None = None,
        tenant_id: UUID | None = None,
    ) -> RedeemResult:
        """Exchange points for a fixed-value voucher in one transaction."""

        with self._tracer.start_as_current_span("loyalty.redeem"):
            try:
                points = self._policy.validate_amount(points_to_redeem)
            except InvalidInputError as exc:
                self._observability.record_outcome("redeem", exc.kind)
                raise

            async with self._transaction("redeem"):
                account = await self._locked_account(customer_id, tenant_id)
                balance = await derive_balance(self._db, account.id)
                if points > balance.current_balance:
                    logger.warning(
                        "Declined loyalty redemption",
                        customer_id=str(customer_id),
                        balance=balance.current_balance,
                        requested=points,
                    )
                    raise InsufficientBalanceError(balance=balance.current_balance, requested=points)

                value = self._policy.voucher_value(points)
                voucher = await self._vouchers.mint(
                    VoucherRequest(
                        customer_id=customer_id,
                        amount=value,
                        validity_days=self._policy.validity_days,
                        code_prefix=self._policy.code_prefix,
                        tenant_id=tenant_id,
                        min_spend=self._policy.min_spend_for(points),
                    )
                )
                entry = append_entry(
                    self._db,
                    account.id,
                    balance,
                    points_delta=-points,
                    reference_type=LedgerReferenceType.VOUCHER_REDEMPTION,
                    reference_id=str(voucher.id),
                    reason=notes or f"Redeemed {points} points for voucher {voucher.code}",
                )
                await self._db.flush()
                issued = IssuedVoucher(
                    id=voucher.id,
                    code=voucher.code,
                    value=value,
                    valid_from=voucher.valid_from,
                    valid_until=voucher.valid_until,
                    min_spend=voucher.min_spend,
                )
                entry_id = entry.id

            self._observability.record_outcome("redeem", "success")
            self._observability.record_points("redeemed", points)
            logger.info(
                "Redeemed loyalty points",
                customer_id=str(customer_id),
                points=points,
                voucher_id=str(issued.id),
                voucher_value=str(value),
            )
            return RedeemResult(
                customer_id=customer_id,
                voucher=issued,
                points_redeemed=points,
                new_balance=balance.current_balance - points,
                ledger_entry_id=entry_id,
            )

    async def adjust(
        self,
        customer_id: UUID,
        points_delta: int,
        reason: str,
        *,
        adjusted_by: str | None = None,
        tenant_id: UUID | None = None,
    ) -> AdjustResult:
        """Apply a manual correction; positive deltas count towards lifetime earned."""

        cleaned_reason = (reason or "").strip()
        if not cleaned_reason:
            self._observability.record_outcome("adjust", InvalidInputError.kind)
            raise InvalidInputError("Adjustment reason is required")
        if isinstance(points_delta, bool) or not isinstance(points_delta, int) or points_delta == 0:
            self._observability.record_outcome("adjust", InvalidInputError.kind)
            raise InvalidInputError("Adjustment points must be a non-zero whole number")
        actor = (adjusted_by or "").strip() or SYSTEM_ACTOR

        with self._tracer.start_as_current_span("loyalty.adjust"):
            async with self._transaction("adjust"):
                account = await self._locked_account(customer_id, tenant_id)
                balance = await derive_balance(self._db, account.id)
                if balance.current_balance + points_delta < 0:
                    logger.warning(
                        "Declined loyalty adjustment",
                        customer_id=str(customer_id),
                        balance=balance.current_balance,
                        delta=points_delta,
                    )
                    raise WouldOverdrawError(balance=balance.current_balance, delta=points_delta)

                entry = append_entry(
                    self._db,
                    account.id,
                    balance,
                    points_delta=points_delta,
                    reference_type=LedgerReferenceType.ADJUSTMENT,
                    reference_id=actor,
                    reason=cleaned_reason,
                )
                await self._db.flush()
                entry_id = entry.id

            lifetime = balance.lifetime_earned + max(points_delta, 0)
            self._observability.record_outcome("adjust", "success")
            self._observability.record_points("adjusted", points_delta)
            logger.info(
                "Adjusted loyalty points",
                customer_id=str(customer_id),
                delta=points_delta,
                adjusted_by=actor,
            )
            return AdjustResult(
                customer_id=customer_id,
                points_delta=points_delta,
                new_balance=balance.current_balance + points_delta,
                lifetime_earned=lifetime,
                tier=self._tiers.classify(lifetime).name,
                ledger_entry_id=entry_id,
                adjusted_by=actor,
            )

    async def award_birthday_bonus(
        self,
        customer_id: UUID,
        *,
        bonus_points: int | None = None,
        notes: str | None = None,
        on: date | None = None,
        tenant_id: UUID | None = None,
    ) -> BirthdayBonusResult:
        """Credit the yearly birthday bonus on the customer's birthday.

        Repeats within a year return the first award. Customers born on
        29 February are honoured on 28 February in common years.
        """

        points = self._birthday_points if bonus_points is None else bonus_points
        if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
            self._observability.record_outcome("birthday_bonus", InvalidInputError.kind)
            raise InvalidInputError("Birthday bonus points must be a positive whole number")
        award_date = on or datetime.now(timezone.utc).date()
        reference_id = f"birthday-{award_date.year}"

        with self._tracer.start_as_current_span("loyalty.birthday_bonus"):
            async with self._transaction("birthday_bonus"):
                customer = await self._require_customer(customer_id, tenant_id)
                if customer.birth_date is None:
                    raise InvalidInputError("Customer has no birth date on record")
                if not is_birthday(customer.birth_date, award_date):
                    raise InvalidInputError(f"{award_date.isoformat()} is not the customer's birthday")

                account = await self._accounts.lock_account(
                    await self._accounts.resolve_account(customer_id)
                )
                balance = await derive_balance(self._db, account.id)
                prior = await find_reference_entry(
                    self._db, account.id, LedgerReferenceType.BIRTHDAY_BONUS, reference_id
                )
                if prior is not None:
                    self._observability.record_outcome("birthday_bonus", "duplicate")
                    return BirthdayBonusResult(
                        customer_id=customer_id,
                        points_awarded=prior.points_delta,
                        new_balance=balance.current_balance,
                        ledger_entry_id=prior.id,
                        duplicate=True,
                    )

                entry = append_entry(
                    self._db,
                    account.id,
                    balance,
                    points_delta=points,
                    reference_type=LedgerReferenceType.BIRTHDAY_BONUS,
                    reference_id=reference_id,
                    reason=notes or f"Birthday bonus {award_date.year}",
                )
                await self._db.flush()
                entry_id = entry.id

            self._observability.record_outcome("birthday_bonus", "success")
            self._observability.record_points("earned", points)
            logger.info(
                "Awarded birthday bonus",
                customer_id=str(customer_id),
                points=points,
                year=award_date.year,
            )
            return BirthdayBonusResult(
                customer_id=customer_id,
                points_awarded=points,
                new_balance=balance.current_balance + points,
                ledger_entry_id=entry_id,
            )

    async def get_account(self, customer_id: UUID, *, tenant_id: UUID | None = None) -> AccountSummary:
        """Return the customer's derived balance and tier standing."""

        async with self._transaction("get_account"):
            customer = await self._require_customer(customer_id, tenant_id)
            account = await self._accounts.resolve_account(customer_id)
            account_id = account.id
            balance = await derive_balance(self._db, account_id)
        return self._summarize(customer, account_id, balance)

    async def list_transactions(
        self,
        filters: TransactionFilter,
        *,
        tenant_id: UUID | None = None,
    ) -> TransactionPage:
        """Page through ledger entries.

        With a customer the listing covers that customer's account, and an
        unknown customer yields an empty page. Without one it spans every
        account, restricted to the tenant's customers when a tenant is given.
        """

        async with self._transaction("list_transactions"):
            if filters.customer_id is None:
                return await list_ledger_transactions(self._db, filters, tenant_id=tenant_id)
            if not await self._customers.customer_exists(filters.customer_id, tenant_id):
                return empty_page(filters)
            account = await self._accounts.find_account(filters.customer_id)
            if account is None:
                return empty_page(filters)
            return await list_ledger_transactions(self._db, filters, account_id=account.id)

    async def redemption_catalog(
        self,
        customer_id: UUID | None = None,
        *,
        tenant_id: UUID | None = None,
    ) -> RedemptionCatalog:
        """Voucher options, with availability when a customer is given."""

        if customer_id is None:
            return RedemptionCatalog(items=build_catalog(self._policy), balance=None, suggestions=[])

        async with self._transaction("catalog"):
            account = await self._resolve_known_account(customer_id, tenant_id)
            balance = (await derive_balance(self._db, account.id)).current_balance
        return RedemptionCatalog(
            items=build_catalog(self._policy, balance),
            balance=balance,
            suggestions=suggest_redemptions(balance, self._policy),
        )

    async def _ensure_customer(self, customer_id: UUID, tenant_id: UUID | None) -> None:
        if not await self._customers.customer_exists(customer_id, tenant_id):
            raise AccountNotFoundError(f"Customer {customer_id} not found")

    async def _require_customer(self, customer_id: UUID, tenant_id: UUID | None) -> CustomerProfile:
        customer = await self._customers.get_customer(customer_id, tenant_id)
        if customer is None:
            raise AccountNotFoundError(f"Customer {customer_id} not found")
        return customer

    async def _resolve_known_account(self, customer_id: UUID, tenant_id: UUID | None) -> LoyaltyAccount:
        await self._ensure_customer(customer_id, tenant_id)
        return await self._accounts.resolve_account(customer_id)

    async def _locked_account(self, customer_id: UUID, tenant_id: UUID | None) -> LoyaltyAccount:
        account = await self._resolve_known_account(customer_id, tenant_id)
        return await self._accounts.lock_account(account)

    def _summarize(
        self, customer: CustomerProfile, account_id: UUID, balance: DerivedBalance
    ) -> AccountSummary:
        classification = self._tiers.classify(balance.lifetime_earned)
        return AccountSummary(
            customer_id=customer.id,
            customer=customer,
            account_id=account_id,
            balance=balance.current_balance,
            lifetime_earned=balance.lifetime_earned,
            tier=classification.name,
            tier_multiplier=classification.multiplier,
            next_tier=classification.next_tier.name if classification.next_tier else None,
            points_to_next_tier=classification.points_to_next_tier,
            progress_percent=classification.progress_percent,
            benefits=list(classification.tier.benefits),
        )

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[None]:
        """Commit the enclosed work, or roll all of it back."""

        try:
            yield
            await self._db.commit()
        except LoyaltyLedgerError as exc:
            await self._db.rollback()
            self._observability.record_outcome(operation, exc.kind)
            raise
        except DBAPIError as exc:
            await self._db.rollback()
            self._observability.record_outcome(operation, TransientStoreError.kind)
            logger.exception("Loyalty ledger store failure", operation=operation)
            raise TransientStoreError(
                "The loyalty ledger is temporarily unavailable; nothing was recorded"
            ) from exc
        except Exception:
            await self._db.rollback()
            raise


def _validate_order(order_id: str, order_subtotal: Decimal | int | float | str) -> tuple[str, Decimal]:
    order_ref = (order_id or "").strip()
    if not order_ref:
        raise InvalidInputError("orderId is required")
    if len(order_ref) > 64:
        raise InvalidInputError("orderId must be at most 64 characters")
    subtotal = to_amount(order_subtotal, field_name="orderSubtotal")
    if subtotal < 0:
        raise InvalidInputError("orderSubtotal must not be negative")
    return order_ref, subtotal


def is_birthday(birth_date: date, on: date) -> bool:
    """True when ``on`` falls on the anniversary of ``birth_date``."""

    if (birth_date.month, birth_date.day) == (2, 29) and not calendar.isleap(on.year):
        return (on.month, on.day) == (2, 28)
    return (birth_date.month, birth_date.day) == (on.month, on.day)


__all__ = [
    "AccountSummary",
    "AdjustResult",
    "BirthdayBonusResult",
    "EarnResult",
    "IssuedVoucher",
    "LoyaltyLedgerService",
    "RedeemResult",
    "RedemptionCatalog",
    "is_birthday",
]
