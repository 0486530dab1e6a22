"""Customer identity collaborator."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.models.customer import Customer


@dataclass(frozen=True)
class CustomerProfile:
    id: UUID
    name: str
    email: str
    birth_date: Optional[date] = None
    tenant_id: Optional[UUID] = None


class CustomerDirectory(Protocol):
    """Answers identity questions about customers, optionally scoped to a tenant."""

    async def customer_exists(self, customer_id: UUID, tenant_id: Optional[UUID] = None) -> bool:
        ...

    async def get_customer(
        self, customer_id: UUID, tenant_id: Optional[UUID] = None
    ) -> Optional[CustomerProfile]:
        ...


class SqlCustomerDirectory:
    """Customer directory backed by the ``customers`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def customer_exists(self, customer_id: UUID, tenant_id: Optional[UUID] = None) -> bool:
        stmt = select(Customer.id).where(Customer.id == customer_id)
        if tenant_id is not None:
            stmt = stmt.where(Customer.tenant_id == tenant_id)
        result = await self._db.execute(stmt.limit(1))
        return result.scalar_one_or_none() is not None

    async def get_customer(
        self, customer_id: UUID, tenant_id: Optional[UUID] = None
    ) -> Optional[CustomerProfile]:
        stmt = select(Customer).where(Customer.id == customer_id)
        if tenant_id is not None:
            stmt = stmt.where(Customer.tenant_id == tenant_id)
        customer = (await self._db.execute(stmt.limit(1))).scalar_one_or_none()
        if customer is None:
            return None
        return CustomerProfile(
            id=customer.id,
            name=customer.display_name or customer.email,
            email=customer.email,
            birth_date=customer.birth_date,
            tenant_id=customer.tenant_id,
        )


__all__ = ["CustomerDirectory", "CustomerProfile", "SqlCustomerDirectory"]
