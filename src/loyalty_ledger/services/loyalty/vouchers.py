"""Voucher minting collaborator used by point redemptions."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.models.voucher import Voucher

_CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class VoucherRequest:
    customer_id: UUID
    amount: Decimal
    validity_days: int
    code_prefix: str = "LP"
    tenant_id: Optional[UUID] = None
    min_spend: Optional[Decimal] = None


class VoucherMinter(Protocol):
    """Creates a voucher inside the caller's open transaction.

    Implementations must not commit; the redemption commits the voucher and
    its ledger debit together.
    """

    async def mint(self, request: VoucherRequest) -> Voucher:
        ...


class SqlVoucherMinter:
    """Writes fixed-value, single-use vouchers to ``loyalty_vouchers``."""

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def mint(self, request: VoucherRequest) -> Voucher:
        valid_from = datetime.now(timezone.utc)
        voucher = Voucher(
            tenant_id=request.tenant_id,
            customer_id=request.customer_id,
            code=await self._generate_unique_code(request.code_prefix),
            kind="fixed",
            amount=request.amount,
            min_spend=request.min_spend,
            usage_limit=1,
            usage_per_customer=1,
            valid_from=valid_from,
            valid_until=valid_from + timedelta(days=request.validity_days),
            is_active=True,
        )
        self._db.add(voucher)
        await self._db.flush()
        return voucher

    async def _generate_unique_code(self, prefix: str) -> str:
        stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
        suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
        candidate = f"{prefix}{stamp}{suffix}"
        stmt = select(Voucher.id).where(Voucher.code == candidate)
        result = await self._db.execute(stmt)
        if result.scalar_one_or_none():
            return await self._generate_unique_code(prefix)
        return candidate


__all__ = ["SqlVoucherMinter", "VoucherMinter", "VoucherRequest"]
