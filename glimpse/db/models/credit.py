from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from glimpse.db.base import Base, utcnow


class CreditBalance(Base):
    """Like allowance of a user: daily free like, purchased credits and subscription window."""
    __tablename__ = "credit_balances"
    __table_args__ = (
        CheckConstraint("purchased_credits >= 0", name="purchased_credits_non_negative"),
    )

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    free_like_available: Mapped[bool] = mapped_column(Boolean, default=True)
    purchased_credits: Mapped[int] = mapped_column(Integer, default=0)
    unlimited_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="credit_balance")

    def has_unlimited(self, now: datetime) -> bool:
        return self.unlimited_until is not None and self.unlimited_until > now

    def __repr__(self) -> str:
        return (
            f"<CreditBalance {self.user_id}: free={self.free_like_available} "
            f"purchased={self.purchased_credits} unlimited_until={self.unlimited_until}>"
        )


class CreditPurchase(Base):
    """A payment confirmed by the payment collaborator, applied exactly once."""
    __tablename__ = "credit_purchases"

    id: Mapped[int] = mapped_column(primary_key=True)
    payment_id: Mapped[str] = mapped_column(String(128), unique=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    credits: Mapped[int] = mapped_column(Integer, default=0)
    unlimited_days: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
