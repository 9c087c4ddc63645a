from datetime import datetime

from sqlalchemy import DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from glimpse.db.base import Base


class LikeCooldown(Base):
    """Last like attempt per ordered (from, to) pair, across all groups."""
    __tablename__ = "like_cooldowns"

    from_user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    to_user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    last_liked_at: Mapped[datetime] = mapped_column(DateTime)

    def __repr__(self) -> str:
        return f"<LikeCooldown {self.from_user_id}->{self.to_user_id} at {self.last_liked_at}>"
