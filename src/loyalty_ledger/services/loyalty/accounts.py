"""Lazy, race-safe resolution of loyalty accounts."""

from __future__ import annotations

from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.models.loyalty import LoyaltyAccount


class AccountResolver:
    """Fetch or create the single loyalty account owned by a customer."""

    max_attempts = 3

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def find_account(self, customer_id: UUID) -> LoyaltyAccount | None:
        stmt = select(LoyaltyAccount).where(LoyaltyAccount.customer_id == customer_id)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def resolve_account(self, customer_id: UUID, *, _attempt: int = 1) -> LoyaltyAccount:
        """Return the customer's account, creating it on first use.

        A concurrent creator trips the unique constraint on ``customer_id``;
        the loser rolls back and re-reads the winner's row.
        """

        account = await self.find_account(customer_id)
        if account:
            return account

        account = LoyaltyAccount(customer_id=customer_id)
        self._db.add(account)
        try:
            await self._db.flush()
        except IntegrityError:
            await self._db.rollback()
            if _attempt >= self.max_attempts:
                raise
            logger.warning("Detected race when creating loyalty account", customer_id=str(customer_id))
            return await self.resolve_account(customer_id, _attempt=_attempt + 1)

        await self._db.commit()
        logger.info("Created loyalty account", customer_id=str(customer_id), account_id=str(account.id))
        return account

    async def lock_account(self, account: LoyaltyAccount) -> LoyaltyAccount:
        """Re-select the account row ``FOR UPDATE`` for the current transaction.

        Dialects without row locks ignore the clause; SQLite engines serialize
        writers with ``BEGIN IMMEDIATE`` instead.
        """

        stmt = (
            select(LoyaltyAccount)
            .where(LoyaltyAccount.id == account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one()


__all__ = ["AccountResolver"]
