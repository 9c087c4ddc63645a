from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from glimpse.db.models import InterestRegistration
from glimpse.db.repositories.base import BaseRepository


class InterestRepository(BaseRepository[InterestRegistration]):
    """Repository for interest registrations."""

    def __init__(self):
        super().__init__(InterestRegistration)

    async def get_by_correlation_id(self, session: AsyncSession, user_id: str, correlation_id: str) -> InterestRegistration | None:
        return await self.get_by_attribute(
            session,
            expression=(
                (InterestRegistration.user_id == user_id)
                & (InterestRegistration.correlation_id == correlation_id)
            ),
        )

    async def list_for_user(self, session: AsyncSession, user_id: str, now: datetime) -> list[InterestRegistration]:
        query = (
            select(InterestRegistration)
            .where(InterestRegistration.user_id == user_id, InterestRegistration.expires_at > now)
            .order_by(InterestRegistration.created_at.desc(), InterestRegistration.id.desc())
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    async def find_by_match_hash(
        self,
        session: AsyncSession,
        match_hash: str,
        registration_type: str,
        exclude_user_id: str,
        now: datetime,
    ) -> list[InterestRegistration]:
        query = select(InterestRegistration).where(
            InterestRegistration.match_hash == match_hash,
            InterestRegistration.registration_type == registration_type,
            InterestRegistration.user_id != exclude_user_id,
            InterestRegistration.expires_at > now,
        )
        result = await session.execute(query)
        return list(result.scalars().all())


interest_repo = InterestRepository()
