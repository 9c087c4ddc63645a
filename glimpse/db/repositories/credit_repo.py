from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from glimpse.db.base import utcnow
from glimpse.db.models import CreditBalance, CreditPurchase
from glimpse.db.repositories.base import BaseRepository


class CreditRepository(BaseRepository[CreditBalance]):
    """Repository for like credit balances.

    Every mutation that can race is a single conditional UPDATE; callers read
    the affected row count instead of reading the balance first.
    """

    def __init__(self):
        super().__init__(CreditBalance)

    async def ensure_balance(self, session: AsyncSession, user_id: str) -> None:
        """Create the balance row if missing, tolerating a concurrent insert."""
        values = {"user_id": user_id, "free_like_available": True, "purchased_credits": 0, "updated_at": utcnow()}
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(CreditBalance).values(**values).on_conflict_do_nothing()
        elif dialect == "sqlite":
            stmt = sqlite.insert(CreditBalance).values(**values).on_conflict_do_nothing()
        else:
            if await session.get(CreditBalance, user_id) is None:
                session.add(CreditBalance(**values))
                await session.flush()
            return
        await session.execute(stmt)

    async def get_balance(self, session: AsyncSession, user_id: str) -> CreditBalance:
        """Get a fresh copy of the balance row, creating it on first access."""
        await self.ensure_balance(session, user_id)
        query = (
            select(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(query)
        return result.scalar_one()

    async def _conditional_update(self, session: AsyncSession, condition, values: dict) -> bool:
        stmt = (
            update(CreditBalance)
            .where(condition)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def try_consume_free(self, session: AsyncSession, user_id: str) -> bool:
        return await self._conditional_update(
            session,
            (CreditBalance.user_id == user_id) & CreditBalance.free_like_available.is_(True),
            {"free_like_available": False},
        )

    async def try_consume_purchased(self, session: AsyncSession, user_id: str) -> bool:
        return await self._conditional_update(
            session,
            (CreditBalance.user_id == user_id) & (CreditBalance.purchased_credits > 0),
            {"purchased_credits": CreditBalance.purchased_credits - 1},
        )

    async def restore_free(self, session: AsyncSession, user_id: str) -> bool:
        return await self._conditional_update(
            session,
            CreditBalance.user_id == user_id,
            {"free_like_available": True},
        )

    async def add_purchased(self, session: AsyncSession, user_id: str, amount: int) -> None:
        await self.ensure_balance(session, user_id)
        await self._conditional_update(
            session,
            CreditBalance.user_id == user_id,
            {"purchased_credits": CreditBalance.purchased_credits + amount},
        )

    async def extend_unlimited(self, session: AsyncSession, user_id: str, until: datetime) -> None:
        """Move the unlimited window forward; an earlier ``until`` never shortens it."""
        await self.ensure_balance(session, user_id)
        await self._conditional_update(
            session,
            (CreditBalance.user_id == user_id)
            & ((CreditBalance.unlimited_until.is_(None)) | (CreditBalance.unlimited_until < until)),
            {"unlimited_until": until},
        )

    async def reset_free_likes(self, session: AsyncSession) -> int:
        stmt = (
            update(CreditBalance)
            .where(CreditBalance.free_like_available.is_(False))
            .values(free_like_available=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount

    async def get_purchase(self, session: AsyncSession, payment_id: str) -> CreditPurchase | None:
        query = select(CreditPurchase).where(CreditPurchase.payment_id == payment_id)
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def add_purchase(self, session: AsyncSession, payment_id: str, user_id: str, credits: int, unlimited_days: int) -> CreditPurchase:
        purchase = CreditPurchase(
            payment_id=payment_id,
            user_id=user_id,
            credits=credits,
            unlimited_days=unlimited_days,
        )
        session.add(purchase)
        await session.flush()
        return purchase


credit_repo = CreditRepository()
