from dataclasses import dataclass
from typing import Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from glimpse.core.config import Settings, get_settings
from glimpse.core.encryption import decrypt_message, derive_match_key, encrypt_message
from glimpse.core.errors import MatchAccessError
from glimpse.db.models import Match
from glimpse.db.repositories import match_repo


@dataclass(frozen=True)
class SealedMessage:
    match_id: int
    channel_id: str
    sender_id: str
    envelope: str


class MatchChat:
    """Seals and opens chat payloads for the two participants of an active match.

    The match key is derived on every call and never stored.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def _authorize(self, session: AsyncSession, match_id: int, user_id: str) -> Match:
        match = await match_repo.get_by_id(session, match_id)
        if match is None or not match.active:
            raise MatchAccessError(f"Match {match_id} is not active")
        if not match.has_participant(user_id):
            logger.warning(f"User {user_id} tried to use match {match_id} they are not part of")
            raise MatchAccessError(f"User {user_id} is not a participant of match {match_id}")
        return match

    def _key(self, match: Match) -> str:
        return derive_match_key(match.user_a_id, match.user_b_id, self.settings.MATCH_KEY_SECRET)

    async def seal(self, session: AsyncSession, match_id: int, sender_id: str, plaintext: str) -> SealedMessage:
        match = await self._authorize(session, match_id, sender_id)
        envelope = encrypt_message(plaintext, self._key(match))
        return SealedMessage(
            match_id=match.id,
            channel_id=match.chat_channel_id,
            sender_id=sender_id,
            envelope=envelope,
        )

    async def open(self, session: AsyncSession, match_id: int, reader_id: str, envelope: str) -> str:
        """Decrypt a payload for a participant.

        Raises:
            MatchAccessError: match inactive or reader not a participant
            DecryptionError: envelope tampered with or corrupt
        """
        match = await self._authorize(session, match_id, reader_id)
        return decrypt_message(envelope, self._key(match))
