from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from glimpse.db.models import LikeCooldown


async def get_last_like_at(session: AsyncSession, from_user_id: str, to_user_id: str) -> datetime | None:
    """Timestamp of the last like attempt from one user to another."""
    record = await session.get(LikeCooldown, (from_user_id, to_user_id), populate_existing=True)
    return record.last_liked_at if record else None


async def upsert_last_like_at(session: AsyncSession, from_user_id: str, to_user_id: str, at: datetime) -> LikeCooldown:
    """Store the attempt time; a record never moves backwards."""
    record = await session.get(LikeCooldown, (from_user_id, to_user_id))
    if record is None:
        record = LikeCooldown(from_user_id=from_user_id, to_user_id=to_user_id, last_liked_at=at)
        session.add(record)
    elif record.last_liked_at < at:
        record.last_liked_at = at
    await session.flush()
    return record
