from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from glimpse.db.base import Base, utcnow


class LikeStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"        # consumed by a match
    CANCELLED = "cancelled"    # withdrawn by the sender
    DISSOLVED = "dissolved"    # the match it formed was ended
    EXPIRED = "expired"        # replaced by a new like after the cooldown


ACTIVE_LIKE_STATUSES = (LikeStatus.PENDING.value, LikeStatus.MATCHED.value)


class LikeEdge(Base):
    """One-directional like from one user to another inside a group."""
    __tablename__ = "likes"
    __table_args__ = (
        # One active like per direction and group
        Index(
            "uq_likes_active_edge",
            "from_user_id",
            "to_user_id",
            "group_id",
            unique=True,
            sqlite_where=text("status IN ('pending', 'matched')"),
            postgresql_where=text("status IN ('pending', 'matched')"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    from_user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    to_user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    group_id: Mapped[str] = mapped_column(String(64))
    is_super: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(16), default=LikeStatus.PENDING.value)
    debit_source: Mapped[str] = mapped_column(String(16))
    match_id: Mapped[Optional[int]] = mapped_column(ForeignKey("matches.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    from_user = relationship("User", foreign_keys=[from_user_id])
    to_user = relationship("User", foreign_keys=[to_user_id])

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_LIKE_STATUSES

    def __repr__(self) -> str:
        return f"<LikeEdge {self.id}: {self.from_user_id}->{self.to_user_id} in {self.group_id} ({self.status})>"
