from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from glimpse.db.base import Base, utcnow


class InterestRegistration(Base):
    """Encrypted "my info" / "looking for" registration.

    Rows are keyed by the client generated ``correlation_id`` so a retried
    offline sync updates the same record.
    """
    __tablename__ = "interest_registrations"
    __table_args__ = (
        UniqueConstraint("user_id", "correlation_id", name="uq_interest_registrations_user_correlation"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    correlation_id: Mapped[str] = mapped_column(String(64))
    registration_type: Mapped[str] = mapped_column(String(16))
    interest_type: Mapped[str] = mapped_column(String(32))
    relationship_intent: Mapped[str] = mapped_column(String(16))
    encrypted_payload: Mapped[str] = mapped_column(Text)
    match_hash: Mapped[str] = mapped_column(String(64), index=True)
    display_value: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
