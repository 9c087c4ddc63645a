from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from glimpse.db.models import User
from glimpse.db.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self):
        super().__init__(User)

    async def create_user(self, session: AsyncSession, nickname: str, **fields) -> User:
        """Create a user profile. Identity verification happens elsewhere."""
        return await self.create(session, {"nickname": nickname, **fields})

    async def is_premium(self, session: AsyncSession, user_id: str) -> bool:
        user = await self.get(session, user_id)
        return bool(user and user.is_premium)

    async def set_premium(self, session: AsyncSession, user_id: str, is_premium: bool) -> None:
        """Set the subscription flag (subscription collaborator)."""
        await session.execute(
            update(User)
            .where(User.id == user_id)
            .values(is_premium=is_premium)
            .execution_options(synchronize_session=False)
        )


user_repo = UserRepository()
