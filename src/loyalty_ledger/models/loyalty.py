"""Loyalty account and ledger models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

from loyalty_ledger.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerReferenceType(str, Enum):
    """Business events that can cause a ledger entry."""

    ORDER = "order"
    VOUCHER_REDEMPTION = "voucher_redemption"
    ADJUSTMENT = "adjustment"
    BIRTHDAY_BONUS = "birthday_bonus"
    EXPIRY = "expiry"
    REFUND = "refund"


class TransactionCategory(str, Enum):
    """Display vocabulary for ledger entries."""

    EARNED = "earned"
    REDEEMED = "redeemed"
    ADJUSTED = "adjusted"
    BONUS = "bonus"
    EXPIRED = "expired"
    REFUNDED = "refunded"


CATEGORY_BY_REFERENCE: dict[LedgerReferenceType, TransactionCategory] = {
    LedgerReferenceType.ORDER: TransactionCategory.EARNED,
    LedgerReferenceType.VOUCHER_REDEMPTION: TransactionCategory.REDEEMED,
    LedgerReferenceType.ADJUSTMENT: TransactionCategory.ADJUSTED,
    LedgerReferenceType.BIRTHDAY_BONUS: TransactionCategory.BONUS,
    LedgerReferenceType.EXPIRY: TransactionCategory.EXPIRED,
    LedgerReferenceType.REFUND: TransactionCategory.REFUNDED,
}

REFERENCE_BY_CATEGORY: dict[TransactionCategory, LedgerReferenceType] = {
    category: reference for reference, category in CATEGORY_BY_REFERENCE.items()
}

# Reference types that may appear at most once per account and reference id.
IDEMPOTENT_REFERENCE_TYPES = (LedgerReferenceType.ORDER, LedgerReferenceType.BIRTHDAY_BONUS)
_IDEMPOTENT_REFERENCE_CLAUSE = "reference_type IN ({})".format(
    ", ".join(f"'{reference.value}'" for reference in IDEMPOTENT_REFERENCE_TYPES)
)


class LoyaltyAccount(Base):
    """Ledger account owned by exactly one customer."""

    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        UniqueConstraint("customer_id", name="uq_loyalty_accounts_customer_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class LoyaltyLedgerEntry(Base):
    """Immutable signed point movement tied to the business event that caused it."""

    __tablename__ = "loyalty_ledger"
    __table_args__ = (
        UniqueConstraint("account_id", "sequence", name="uq_loyalty_ledger_account_sequence"),
        CheckConstraint("points_delta <> 0", name="ck_loyalty_ledger_points_delta_nonzero"),
        Index("ix_loyalty_ledger_account_created", "account_id", "created_at"),
        Index(
            "uq_loyalty_ledger_idempotent_reference",
            "account_id",
            "reference_type",
            "reference_id",
            unique=True,
            sqlite_where=text(_IDEMPOTENT_REFERENCE_CLAUSE),
            postgresql_where=text(_IDEMPOTENT_REFERENCE_CLAUSE),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    sequence = Column(Integer, nullable=False)
    points_delta = Column(Integer, nullable=False)
    reference_type = Column(
        SqlEnum(
            LedgerReferenceType,
            name="loyalty_reference_type",
            native_enum=False,
            length=24,
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=False,
    )
    reference_id = Column(String(64), nullable=False)
    reason = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def category(self) -> TransactionCategory:
        return CATEGORY_BY_REFERENCE[LedgerReferenceType(self.reference_type)]
