from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from glimpse.db.base import utcnow
from glimpse.db.repositories import cooldown_repo


class CooldownTracker:
    """Rejects repeated likes from one user to the same target inside a window.

    Keyed on the time of the attempt, not on its outcome: cancelling a like
    does not clear it.
    """

    def __init__(self, window: timedelta, clock: Callable[[], datetime] = utcnow):
        self.window = window
        self.clock = clock

    async def remaining(self, session: AsyncSession, from_user_id: str, to_user_id: str) -> Optional[timedelta]:
        """Time left until the next like is allowed, or None if not cooling down."""
        last = await cooldown_repo.get_last_like_at(session, from_user_id, to_user_id)
        if last is None:
            return None
        left = last + self.window - self.clock()
        return left if left > timedelta(0) else None

    async def is_cooling_down(self, session: AsyncSession, from_user_id: str, to_user_id: str) -> bool:
        return await self.remaining(session, from_user_id, to_user_id) is not None

    async def record(self, session: AsyncSession, from_user_id: str, to_user_id: str, at: Optional[datetime] = None) -> None:
        await cooldown_repo.upsert_last_like_at(session, from_user_id, to_user_id, at or self.clock())
