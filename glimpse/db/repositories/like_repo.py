from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from glimpse.db.models import ACTIVE_LIKE_STATUSES, LikeEdge, LikeStatus
from glimpse.db.repositories.base import BaseRepository


class LikeRepository(BaseRepository[LikeEdge]):
    """Repository for like edges."""

    def __init__(self):
        super().__init__(LikeEdge)

    async def get_active(self, session: AsyncSession, from_user_id: str, to_user_id: str, group_id: str) -> LikeEdge | None:
        """Get the active like from one user to another in a group, if any."""
        return await self.get_by_attribute(
            session,
            expression=(
                (LikeEdge.from_user_id == from_user_id)
                & (LikeEdge.to_user_id == to_user_id)
                & (LikeEdge.group_id == group_id)
                & LikeEdge.status.in_(ACTIVE_LIKE_STATUSES)
            ),
        )

    async def get_active_any_group(self, session: AsyncSession, from_user_id: str, to_user_id: str) -> LikeEdge | None:
        query = (
            select(LikeEdge)
            .where(
                LikeEdge.from_user_id == from_user_id,
                LikeEdge.to_user_id == to_user_id,
                LikeEdge.status.in_(ACTIVE_LIKE_STATUSES),
            )
            .order_by(LikeEdge.created_at.desc())
            .execution_options(populate_existing=True)
        )
        result = await session.execute(query)
        return result.scalars().first()

    async def create_like(
        self,
        session: AsyncSession,
        from_user_id: str,
        to_user_id: str,
        group_id: str,
        is_super: bool,
        debit_source: str,
        created_at: datetime,
    ) -> LikeEdge:
        return await self.create(
            session,
            {
                "from_user_id": from_user_id,
                "to_user_id": to_user_id,
                "group_id": group_id,
                "is_super": is_super,
                "debit_source": debit_source,
                "status": LikeStatus.PENDING.value,
                "created_at": created_at,
            },
        )

    async def mark_matched(self, session: AsyncSession, likes: list[LikeEdge], match_id: int) -> None:
        """Mark like edges as consumed by a match."""
        for like in likes:
            like.status = LikeStatus.MATCHED.value
            like.match_id = match_id
        await session.flush()

    async def mark_cancelled(self, session: AsyncSession, like_id: int, at: datetime) -> bool:
        """Cancel a pending like. Returns False if it was no longer pending."""
        result = await session.execute(
            update(LikeEdge)
            .where(LikeEdge.id == like_id, LikeEdge.status == LikeStatus.PENDING.value)
            .values(status=LikeStatus.CANCELLED.value, cancelled_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_expired(self, session: AsyncSession, like_id: int) -> bool:
        """Retire a pending like that a new like replaces."""
        result = await session.execute(
            update(LikeEdge)
            .where(LikeEdge.id == like_id, LikeEdge.status == LikeStatus.PENDING.value)
            .values(status=LikeStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def dissolve_for_match(self, session: AsyncSession, match_id: int) -> int:
        result = await session.execute(
            update(LikeEdge)
            .where(LikeEdge.match_id == match_id, LikeEdge.status == LikeStatus.MATCHED.value)
            .values(status=LikeStatus.DISSOLVED.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def get_received_pending(self, session: AsyncSession, user_id: str, limit: int = 20, offset: int = 0) -> list[LikeEdge]:
        """Likes waiting on the user, newest first."""
        query = (
            select(LikeEdge)
            .options(joinedload(LikeEdge.from_user))
            .where(LikeEdge.to_user_id == user_id, LikeEdge.status == LikeStatus.PENDING.value)
            .order_by(LikeEdge.created_at.desc(), LikeEdge.id.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    async def get_sent(self, session: AsyncSession, user_id: str, limit: int = 20, offset: int = 0) -> list[LikeEdge]:
        query = (
            select(LikeEdge)
            .where(LikeEdge.from_user_id == user_id)
            .order_by(LikeEdge.created_at.desc(), LikeEdge.id.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    async def count(self, session: AsyncSession, *conditions) -> int:
        result = await session.execute(select(func.count(LikeEdge.id)).where(*conditions))
        return int(result.scalar_one())


like_repo = LikeRepository()
