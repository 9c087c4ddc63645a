from datetime import datetime
from enum import Enum

from sqlalchemy import ForeignKey, String, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from glimpse.db.base import Base, utcnow


class MemberStatus(str, Enum):
    """Enum for group membership status."""
    ACTIVE = "active"
    LEFT = "left"


class GroupMember(Base):
    """Membership of a user in a group. Likes are scoped to a shared group."""

    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("user_id", "group_id", name="uq_group_members_user_group"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    group_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(16), default=MemberStatus.ACTIVE.value)
    nickname: Mapped[str | None] = mapped_column(String(32), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user = relationship("User", back_populates="group_memberships")

    def __repr__(self):
        return f"<GroupMember {self.id}: {self.user_id} in {self.group_id} ({self.status})>"
