"""
Interest registrations ("my info" and "looking for").

Clients register offline first and sync later, so every registration carries
a client generated correlation id and the server upsert is idempotent on
(user, correlation id). Personal values are stored only encrypted; matching
works on a keyed hash of the normalised primary value.
"""
import json
import re
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Callable, Literal, Optional, Union

from loguru import logger
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from glimpse.core.config import Settings, get_settings
from glimpse.core.encryption import FieldEncryptor, hmac_sha256_hex
from glimpse.db.base import utcnow
from glimpse.db.models import InterestRegistration
from glimpse.db.repositories import interest_repo


class RegistrationType(str, Enum):
    MY_INFO = "my_info"
    LOOKING_FOR = "looking_for"

    @property
    def counterpart(self) -> "RegistrationType":
        return RegistrationType.LOOKING_FOR if self is RegistrationType.MY_INFO else RegistrationType.MY_INFO


class RelationshipIntent(str, Enum):
    ROMANTIC = "romantic"
    FRIEND = "friend"


def _mask(value: str, keep: int = 1) -> str:
    if len(value) <= keep:
        return "*" * len(value)
    return value[:keep] + "*" * (len(value) - keep)


class _Interest(BaseModel):
    @abstractmethod
    def primary_value(self) -> str:
        """Normalised value the match hash is computed from."""

    def display_value(self) -> str:
        return _mask(self.primary_value())


class PhoneInterest(_Interest):
    interest_type: Literal["phone"] = "phone"
    phone_number: str = Field(min_length=4, max_length=32)

    @field_validator("phone_number")
    @classmethod
    def _digits(cls, v: str) -> str:
        digits = re.sub(r"\D", "", v)
        if len(digits) < 4:
            raise ValueError("Phone number needs at least 4 digits")
        return digits

    def primary_value(self) -> str:
        return self.phone_number

    def display_value(self) -> str:
        return "*" * (len(self.phone_number) - 4) + self.phone_number[-4:]


class EmailInterest(_Interest):
    interest_type: Literal["email"] = "email"
    email: str = Field(max_length=254)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        v = v.strip().lower()
        if not re.fullmatch(r"[^@\s]+@[^@\s]+\.[^@\s]+", v):
            raise ValueError("Invalid email address")
        return v

    def primary_value(self) -> str:
        return self.email

    def display_value(self) -> str:
        local, domain = self.email.split("@", 1)
        return f"{_mask(local)}@{domain}"


class CompanyInterest(_Interest):
    interest_type: Literal["company"] = "company"
    company_name: str = Field(min_length=1, max_length=128)
    department: Optional[str] = Field(default=None, max_length=128)

    def primary_value(self) -> str:
        return self.company_name.strip().lower()

    def display_value(self) -> str:
        return self.company_name.strip()


class SchoolInterest(_Interest):
    interest_type: Literal["school"] = "school"
    school_name: str = Field(min_length=1, max_length=128)
    major: Optional[str] = Field(default=None, max_length=128)

    def primary_value(self) -> str:
        return self.school_name.strip().lower()

    def display_value(self) -> str:
        return self.school_name.strip()


class SocialIdInterest(_Interest):
    interest_type: Literal["social_id"] = "social_id"
    platform: str = Field(min_length=1, max_length=32)
    account_id: str = Field(min_length=1, max_length=128)

    def primary_value(self) -> str:
        return f"{self.platform.strip().lower()}:{self.account_id.strip().lstrip('@').lower()}"

    def display_value(self) -> str:
        return f"{self.platform.strip()} {_mask(self.account_id.strip().lstrip('@'), keep=2)}"


class PartTimeJobInterest(_Interest):
    interest_type: Literal["part_time_job"] = "part_time_job"
    workplace: str = Field(min_length=1, max_length=128)
    category: Optional[str] = Field(default=None, max_length=64)

    def primary_value(self) -> str:
        return self.workplace.strip().lower()


class NicknameInterest(_Interest):
    interest_type: Literal["nickname"] = "nickname"
    nickname: str = Field(min_length=1, max_length=32)

    def primary_value(self) -> str:
        return self.nickname.strip().lower()


Interest = Annotated[
    Union[
        PhoneInterest,
        EmailInterest,
        CompanyInterest,
        SchoolInterest,
        SocialIdInterest,
        PartTimeJobInterest,
        NicknameInterest,
    ],
    Field(discriminator="interest_type"),
]


class InterestRequest(BaseModel):
    registration_type: RegistrationType = Field(alias="registrationType")
    relationship_intent: RelationshipIntent = Field(default=RelationshipIntent.ROMANTIC, alias="relationshipIntent")
    interest: Interest

    model_config = {"populate_by_name": True}


@dataclass(frozen=True)
class UpsertResult:
    registration: InterestRegistration
    created: bool
    counterpart_count: int


class InterestService:
    def __init__(self, settings: Optional[Settings] = None, clock: Callable[[], datetime] = utcnow):
        self.settings = settings or get_settings()
        self.clock = clock
        self.encryptor = FieldEncryptor(self.settings.ENCRYPTION_KEY)

    def match_hash(self, interest) -> str:
        return hmac_sha256_hex(f"{interest.interest_type}:{interest.primary_value()}", self.settings.MATCH_KEY_SECRET)

    async def upsert(
        self, session: AsyncSession, user_id: str, correlation_id: str, request: InterestRequest
    ) -> UpsertResult:
        """Store a registration once per correlation id. Retries return the stored row."""
        existing = await interest_repo.get_by_correlation_id(session, user_id, correlation_id)
        if existing is not None:
            logger.debug(f"Interest {correlation_id} of user {user_id} already synced")
            return UpsertResult(existing, False, await self._counterparts(session, existing))

        interest = request.interest
        now = self.clock()
        registration = InterestRegistration(
            user_id=user_id,
            correlation_id=correlation_id,
            registration_type=request.registration_type.value,
            interest_type=interest.interest_type,
            relationship_intent=request.relationship_intent.value,
            encrypted_payload=self.encryptor.encrypt(interest.model_dump_json(), aad=correlation_id),
            match_hash=self.match_hash(interest),
            display_value=interest.display_value()[:64],
            created_at=now,
            updated_at=now,
            expires_at=now + self.settings.interest_ttl,
        )
        session.add(registration)
        try:
            await session.commit()
        except IntegrityError:
            # Concurrent retry of the same sync won the insert
            await session.rollback()
            existing = await interest_repo.get_by_correlation_id(session, user_id, correlation_id)
            if existing is None:
                raise
            return UpsertResult(existing, False, await self._counterparts(session, existing))

        logger.info(f"Registered {interest.interest_type} interest {correlation_id} for user {user_id}")
        return UpsertResult(registration, True, await self._counterparts(session, registration))

    async def _counterparts(self, session: AsyncSession, registration: InterestRegistration) -> int:
        counterpart_type = RegistrationType(registration.registration_type).counterpart
        found = await interest_repo.find_by_match_hash(
            session, registration.match_hash, counterpart_type.value, registration.user_id, self.clock()
        )
        return len(found)

    async def list_for_user(self, session: AsyncSession, user_id: str) -> list[InterestRegistration]:
        return await interest_repo.list_for_user(session, user_id, self.clock())

    def reveal_payload(self, registration: InterestRegistration) -> dict:
        """Decrypt the stored personal values for their owner."""
        return json.loads(self.encryptor.decrypt(registration.encrypted_payload, aad=registration.correlation_id))
