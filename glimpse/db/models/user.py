import uuid
from datetime import datetime
from typing import Optional, List

from sqlalchemy import Boolean, DateTime, String, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from glimpse.db.base import Base, utcnow


def _new_user_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """User model for storing profile data."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_user_id)
    nickname: Mapped[str] = mapped_column(String(32))

    # Private profile fields, only shown after a match and an explicit opt-in
    real_name: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    birth_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    exact_location: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    company: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    school: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Comma separated ProfileField values the user agreed to reveal to matches
    revealed_fields: Mapped[str] = mapped_column(String(255), default="")

    # User state
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    group_memberships: Mapped[List["GroupMember"]] = relationship("GroupMember", back_populates="user")
    credit_balance = relationship("CreditBalance", back_populates="user", uselist=False)

    @property
    def revealed_field_names(self) -> set[str]:
        return {name.strip() for name in (self.revealed_fields or "").split(",") if name.strip()}

    def __repr__(self) -> str:
        return f"<User {self.id} ({self.nickname})>"
