from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from glimpse.db.base import Base, utcnow


class Match(Base):
    """Model representing a match between two users.

    ``user_a_id`` is always the lexicographically smaller id so a pair has
    exactly one canonical row per group.
    """
    __tablename__ = "matches"
    __table_args__ = (
        Index(
            "uq_matches_active_pair",
            "user_a_id",
            "user_b_id",
            "group_id",
            unique=True,
            sqlite_where=text("active = 1"),
            postgresql_where=text("active"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_a_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    user_b_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    group_id: Mapped[str] = mapped_column(String(64))
    matched_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ended_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Relationships
    user_a = relationship("User", foreign_keys=[user_a_id])
    user_b = relationship("User", foreign_keys=[user_b_id])

    @property
    def chat_channel_id(self) -> str:
        return f"match-{self.group_id}-{self.id}"

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.user_a_id, self.user_b_id)

    def partner_of(self, user_id: str) -> Optional[str]:
        if user_id == self.user_a_id:
            return self.user_b_id
        if user_id == self.user_b_id:
            return self.user_a_id
        return None

    def __repr__(self) -> str:
        return f"<Match {self.id}: {self.user_a_id}<->{self.user_b_id} in {self.group_id} active={self.active}>"
