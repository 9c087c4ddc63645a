from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class _Request(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}


class LikeRequest(_Request):
    to_user_id: str = Field(alias="toUserId", min_length=1, max_length=36)
    group_id: str = Field(alias="groupId", min_length=1, max_length=64)
    is_super: bool = Field(default=False, alias="isSuper")


class MismatchRequest(_Request):
    reason: str = Field(default="", max_length=500)


class SealRequest(_Request):
    plaintext: str = Field(max_length=10_000)


class OpenRequest(_Request):
    envelope: str = Field(min_length=1, max_length=20_000)


class PaymentWebhook(_Request):
    payment_id: str = Field(alias="paymentId", min_length=1, max_length=128)
    user_id: str = Field(alias="userId", min_length=1, max_length=36)
    status: Literal["completed", "failed", "cancelled", "pending"]
    credits: int = Field(default=0, ge=0)
    unlimited_days: int = Field(default=0, alias="unlimitedDays", ge=0)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
