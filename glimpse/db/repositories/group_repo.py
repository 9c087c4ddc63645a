from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from glimpse.db.models import GroupMember, MemberStatus
from glimpse.db.repositories.base import BaseRepository


class GroupMemberRepository(BaseRepository[GroupMember]):
    """Repository for group memberships."""

    def __init__(self):
        super().__init__(GroupMember)

    async def add_member(self, session: AsyncSession, user_id: str, group_id: str, nickname: str | None = None) -> GroupMember:
        existing = await self.get_membership(session, user_id, group_id)
        if existing:
            existing.status = MemberStatus.ACTIVE.value
            await session.flush()
            return existing
        return await self.create(session, {"user_id": user_id, "group_id": group_id, "nickname": nickname})

    async def get_membership(self, session: AsyncSession, user_id: str, group_id: str) -> GroupMember | None:
        return await self.get_by_attribute(
            session,
            expression=(GroupMember.user_id == user_id) & (GroupMember.group_id == group_id),
        )

    async def is_active_member(self, session: AsyncSession, user_id: str, group_id: str) -> bool:
        membership = await self.get_membership(session, user_id, group_id)
        return membership is not None and membership.status == MemberStatus.ACTIVE.value

    async def get_active_group_ids(self, session: AsyncSession, user_id: str) -> list[str]:
        query = (
            select(GroupMember.group_id)
            .where(GroupMember.user_id == user_id, GroupMember.status == MemberStatus.ACTIVE.value)
            .order_by(GroupMember.group_id)
        )
        result = await session.execute(query)
        return list(result.scalars().all())


group_member_repo = GroupMemberRepository()
