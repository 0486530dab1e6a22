"""Reward instruments minted by point redemptions."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, true
from sqlalchemy.dialects.postgresql import UUID

from loyalty_ledger.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Voucher(Base):
    """Fixed-value, single-use voucher. Usage is enforced by checkout, not here."""

    __tablename__ = "loyalty_vouchers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    customer_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    code = Column(String(32), nullable=False, unique=True)
    kind = Column(String(16), nullable=False, default="fixed", server_default="fixed")
    amount = Column(Numeric(16, 2), nullable=False)
    min_spend = Column(Numeric(16, 2), nullable=True)
    usage_limit = Column(Integer, nullable=False, default=1, server_default="1")
    usage_per_customer = Column(Integer, nullable=False, default=1, server_default="1")
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
