"""
Like/match state machine.

Per unordered pair and group the relationship moves
NONE -> A_LIKED (or B_LIKED) -> MATCHED -> UNMATCHED. Every write runs in one
transaction under the canonical pair lock, so two likes crossing each other
still produce exactly one match, and the debit, the like row and the cooldown
are committed together or not at all.

Business rejections are returned in the outcome. Only integrity problems and
infrastructure errors are raised.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from glimpse.core import diagnostics
from glimpse.core.config import Settings, get_settings
from glimpse.core.cooldown_tracker import CooldownTracker
from glimpse.core.credit_ledger import CreditLedger, DebitResult
from glimpse.core.errors import DuplicateMatchError
from glimpse.core.events import EventBus, LikeReceived, MatchCreated, MatchDissolved
from glimpse.core.identity_reveal import RelationshipState, mask_nickname
from glimpse.db.base import utcnow
from glimpse.db.models import LikeEdge, LikeStatus, Match
from glimpse.db.repositories import group_member_repo, like_repo, match_repo, user_repo
from glimpse.db.utils.session_management import PairLocks, pair_lock_key


class RejectionReason(str, Enum):
    # send_like
    SELF_LIKE_FORBIDDEN = "SELF_LIKE_FORBIDDEN"
    NOT_GROUP_MEMBER = "NOT_GROUP_MEMBER"
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
    ALREADY_LIKED = "ALREADY_LIKED"
    PREMIUM_REQUIRED = "PREMIUM_REQUIRED"
    NO_CREDITS = "NO_CREDITS"
    # cancel_like / report_mismatch
    NOT_FOUND = "NOT_FOUND"
    NOT_SENDER = "NOT_SENDER"
    CANCEL_WINDOW_EXPIRED = "CANCEL_WINDOW_EXPIRED"
    ALREADY_MATCHED = "ALREADY_MATCHED"
    NOT_PARTICIPANT = "NOT_PARTICIPANT"
    ALREADY_INACTIVE = "ALREADY_INACTIVE"


@dataclass(frozen=True)
class LikeOutcome:
    is_match: bool = False
    like_id: Optional[int] = None
    match_id: Optional[int] = None
    debit: Optional[DebitResult] = None
    rejection_reason: Optional[RejectionReason] = None
    retry_after: Optional[timedelta] = None

    @property
    def accepted(self) -> bool:
        return self.rejection_reason is None


@dataclass(frozen=True)
class CancelOutcome:
    cancelled: bool
    like_id: int
    refunded: bool = False
    rejection_reason: Optional[RejectionReason] = None


@dataclass(frozen=True)
class MismatchOutcome:
    dissolved: bool
    match_id: int
    rejection_reason: Optional[RejectionReason] = None


@dataclass(frozen=True)
class ReceivedLike:
    like_id: int
    group_id: str
    is_super: bool
    created_at: datetime
    # Only filled in for premium viewers
    from_pseudonym: Optional[str] = None


@dataclass(frozen=True)
class ReceivedLikes:
    total: int
    likes: list[ReceivedLike] = field(default_factory=list)


@dataclass(frozen=True)
class SentLike:
    like_id: int
    to_user_id: str
    group_id: str
    is_super: bool
    status: str
    created_at: datetime
    can_cancel: bool


@dataclass(frozen=True)
class LikeStats:
    sent: int
    received: int
    matches: int


@dataclass(frozen=True)
class MatchView:
    match_id: int
    partner_id: str
    group_id: str
    matched_at: datetime
    chat_channel_id: str


class LikeService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        ledger: Optional[CreditLedger] = None,
        cooldowns: Optional[CooldownTracker] = None,
        bus: Optional[EventBus] = None,
        locks: Optional[PairLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.clock = clock
        self.ledger = ledger or CreditLedger(clock=clock)
        self.cooldowns = cooldowns or CooldownTracker(self.settings.like_cooldown, clock=clock)
        self.bus = bus or EventBus()
        self.locks = locks or PairLocks()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def send_like(
        self,
        session: AsyncSession,
        from_user_id: str,
        to_user_id: str,
        group_id: str,
        is_super: bool = False,
    ) -> LikeOutcome:
        if from_user_id == to_user_id:
            return self._reject(RejectionReason.SELF_LIKE_FORBIDDEN)

        event = None
        async with self.locks.hold(session, pair_lock_key(from_user_id, to_user_id, group_id)):
            try:
                outcome, event = await self._send_like_locked(session, from_user_id, to_user_id, group_id, is_super)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        if event is not None:
            await self.bus.publish(event)
        return outcome

    async def _send_like_locked(
        self,
        session: AsyncSession,
        from_user_id: str,
        to_user_id: str,
        group_id: str,
        is_super: bool,
    ):
        if not (
            await group_member_repo.is_active_member(session, from_user_id, group_id)
            and await group_member_repo.is_active_member(session, to_user_id, group_id)
        ):
            return self._reject(RejectionReason.NOT_GROUP_MEMBER), None

        if not (is_super and self.settings.SUPER_LIKE_BYPASSES_COOLDOWN):
            remaining = await self.cooldowns.remaining(session, from_user_id, to_user_id)
            if remaining is not None:
                return self._reject(RejectionReason.COOLDOWN_ACTIVE, retry_after=remaining), None

        existing = await like_repo.get_active(session, from_user_id, to_user_id, group_id)
        if existing is not None and not self._is_replaceable(existing):
            return self._reject(RejectionReason.ALREADY_LIKED), None

        if is_super and not await user_repo.is_premium(session, from_user_id):
            return self._reject(RejectionReason.PREMIUM_REQUIRED), None

        if not await self.ledger.can_send_like(session, from_user_id):
            return self._reject(RejectionReason.NO_CREDITS), None

        debit = await self.ledger.debit(session, from_user_id)
        if debit is DebitResult.REJECTED:
            # Lost a race against another like by the same sender
            return self._reject(RejectionReason.NO_CREDITS), None

        now = self.clock()
        if existing is not None:
            await like_repo.mark_expired(session, existing.id)
            logger.info(f"Like {existing.id} expired, replaced by a new like from {from_user_id}")
        like = await like_repo.create_like(
            session, from_user_id, to_user_id, group_id, is_super, debit.value, now
        )
        await self.cooldowns.record(session, from_user_id, to_user_id, now)
        diagnostics.record("likes_sent")

        reciprocal = await like_repo.get_active(session, to_user_id, from_user_id, group_id)
        if reciprocal is None:
            logger.info(f"Like {like.id}: {from_user_id} -> {to_user_id} in group {group_id}")
            event = LikeReceived(like_id=like.id, to_user_id=to_user_id, group_id=group_id, is_super=is_super)
            return LikeOutcome(is_match=False, like_id=like.id, debit=debit), event

        match = await match_repo.get_active_match(session, from_user_id, to_user_id, group_id)
        if match is None:
            match = await self._create_match(session, from_user_id, to_user_id, group_id, now)
        await like_repo.mark_matched(session, [like, reciprocal], match.id)

        logger.info(f"Match {match.id} created between {match.user_a_id} and {match.user_b_id} in group {group_id}")
        event = MatchCreated(
            match_id=match.id,
            user_a_id=match.user_a_id,
            user_b_id=match.user_b_id,
            group_id=group_id,
        )
        return LikeOutcome(is_match=True, like_id=like.id, match_id=match.id, debit=debit), event

    async def _create_match(
        self, session: AsyncSession, user1_id: str, user2_id: str, group_id: str, now: datetime
    ) -> Match:
        try:
            match = await match_repo.create_match(session, user1_id, user2_id, group_id, now)
        except IntegrityError as e:
            user_a_id, user_b_id = match_repo.canonical_pair(user1_id, user2_id)
            logger.error(f"Duplicate active match for {user_a_id}/{user_b_id} in group {group_id}: {e}")
            raise DuplicateMatchError(user_a_id, user_b_id, group_id) from e
        diagnostics.record("matches_created")
        return match

    async def cancel_like(self, session: AsyncSession, like_id: int, by_user_id: str) -> CancelOutcome:
        """Withdraw a pending like within the cancel window. The cooldown stays."""
        like = await like_repo.get(session, like_id)
        if like is None:
            return self._reject_cancel(like_id, RejectionReason.NOT_FOUND)
        if like.from_user_id != by_user_id:
            return self._reject_cancel(like_id, RejectionReason.NOT_SENDER)

        key = pair_lock_key(like.from_user_id, like.to_user_id, like.group_id)
        async with self.locks.hold(session, key):
            try:
                outcome = await self._cancel_like_locked(session, like_id)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return outcome

    async def _cancel_like_locked(self, session: AsyncSession, like_id: int) -> CancelOutcome:
        like = await session.get(LikeEdge, like_id, populate_existing=True)
        if like is not None and like.status == LikeStatus.DISSOLVED.value:
            # Its match has ended, but the like was still consumed by it
            return self._reject_cancel(like_id, RejectionReason.ALREADY_MATCHED)
        if like is None or not like.is_active:
            return self._reject_cancel(like_id, RejectionReason.NOT_FOUND)
        if self.clock() - like.created_at >= self.settings.like_cancel_window:
            return self._reject_cancel(like_id, RejectionReason.CANCEL_WINDOW_EXPIRED)
        if like.status == LikeStatus.MATCHED.value:
            return self._reject_cancel(like_id, RejectionReason.ALREADY_MATCHED)

        if not await like_repo.mark_cancelled(session, like_id, self.clock()):
            return self._reject_cancel(like_id, RejectionReason.ALREADY_MATCHED)

        refunded = await self.ledger.refund(session, like.from_user_id, like.debit_source)
        logger.info(f"Like {like_id} cancelled by {like.from_user_id} (refunded={refunded})")
        diagnostics.record("likes_cancelled")
        return CancelOutcome(cancelled=True, like_id=like_id, refunded=refunded)

    async def report_mismatch(
        self, session: AsyncSession, match_id: int, by_user_id: str, reason: str = ""
    ) -> MismatchOutcome:
        """End a match. Credits are not restored and both sides go back to NONE,
        with the cooldown counted from now in both directions."""
        match = await match_repo.get_by_id(session, match_id)
        if match is None:
            return self._reject_mismatch(match_id, RejectionReason.NOT_FOUND)
        if not match.has_participant(by_user_id):
            return self._reject_mismatch(match_id, RejectionReason.NOT_PARTICIPANT)

        event = None
        key = pair_lock_key(match.user_a_id, match.user_b_id, match.group_id)
        async with self.locks.hold(session, key):
            try:
                outcome, event = await self._report_mismatch_locked(session, match_id, by_user_id, reason)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        if event is not None:
            await self.bus.publish(event)
        return outcome

    async def _report_mismatch_locked(self, session: AsyncSession, match_id: int, by_user_id: str, reason: str):
        match = await match_repo.get_by_id(session, match_id)
        if not match.active:
            return self._reject_mismatch(match_id, RejectionReason.ALREADY_INACTIVE), None

        now = self.clock()
        await match_repo.deactivate(session, match, now, reason or "mismatch")
        dissolved = await like_repo.dissolve_for_match(session, match_id)
        await match_repo.create_mismatch_report(session, match_id, by_user_id, reason)
        await self.cooldowns.record(session, match.user_a_id, match.user_b_id, now)
        await self.cooldowns.record(session, match.user_b_id, match.user_a_id, now)

        logger.info(f"Match {match_id} dissolved by {by_user_id} ({dissolved} like(s) dissolved)")
        diagnostics.record("matches_dissolved")
        event = MatchDissolved(
            match_id=match_id,
            user_a_id=match.user_a_id,
            user_b_id=match.user_b_id,
            reason=reason,
        )
        return MismatchOutcome(dissolved=True, match_id=match_id), event

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def received_likes(self, session: AsyncSession, user_id: str, limit: int = 20, offset: int = 0) -> ReceivedLikes:
        """Pending likes for the user. Only premium users see who sent them (masked)."""
        total = await like_repo.count(
            session, LikeEdge.to_user_id == user_id, LikeEdge.status == LikeStatus.PENDING.value
        )
        likes = await like_repo.get_received_pending(session, user_id, limit=limit, offset=offset)
        premium = await user_repo.is_premium(session, user_id)
        return ReceivedLikes(
            total=total,
            likes=[
                ReceivedLike(
                    like_id=like.id,
                    group_id=like.group_id,
                    is_super=like.is_super,
                    created_at=like.created_at,
                    from_pseudonym=mask_nickname(like.from_user.nickname) if premium else None,
                )
                for like in likes
            ],
        )

    async def sent_likes(self, session: AsyncSession, user_id: str, limit: int = 20, offset: int = 0) -> list[SentLike]:
        now = self.clock()
        likes = await like_repo.get_sent(session, user_id, limit=limit, offset=offset)
        return [
            SentLike(
                like_id=like.id,
                to_user_id=like.to_user_id,
                group_id=like.group_id,
                is_super=like.is_super,
                status=like.status,
                created_at=like.created_at,
                can_cancel=(
                    like.status == LikeStatus.PENDING.value
                    and now - like.created_at < self.settings.like_cancel_window
                ),
            )
            for like in likes
        ]

    async def like_stats(self, session: AsyncSession, user_id: str) -> LikeStats:
        sent = await like_repo.count(session, LikeEdge.from_user_id == user_id, LikeEdge.status != LikeStatus.CANCELLED.value)
        received = await like_repo.count(session, LikeEdge.to_user_id == user_id, LikeEdge.status == LikeStatus.PENDING.value)
        matches = await match_repo.get_matches_for_user(session, user_id)
        return LikeStats(sent=sent, received=received, matches=len(matches))

    async def list_matches(self, session: AsyncSession, user_id: str) -> list[MatchView]:
        matches = await match_repo.get_matches_for_user(session, user_id)
        return [
            MatchView(
                match_id=match.id,
                partner_id=match.partner_of(user_id),
                group_id=match.group_id,
                matched_at=match.matched_at,
                chat_channel_id=match.chat_channel_id,
            )
            for match in matches
        ]

    async def relationship_state(
        self, session: AsyncSession, viewer_id: str, subject_id: str, group_id: Optional[str] = None
    ) -> RelationshipState:
        """Relationship between two users, in one group or across all shared groups."""
        if viewer_id == subject_id:
            return RelationshipState.NONE

        if group_id is None:
            match = await match_repo.get_active_match_any_group(session, viewer_id, subject_id)
        else:
            match = await match_repo.get_active_match(session, viewer_id, subject_id, group_id)
        if match is not None:
            return RelationshipState.MATCHED

        if group_id is None:
            viewer_like = await like_repo.get_active_any_group(session, viewer_id, subject_id)
            subject_like = await like_repo.get_active_any_group(session, subject_id, viewer_id)
        else:
            viewer_like = await like_repo.get_active(session, viewer_id, subject_id, group_id)
            subject_like = await like_repo.get_active(session, subject_id, viewer_id, group_id)
        if viewer_like is not None:
            return RelationshipState.VIEWER_LIKED
        if subject_like is not None:
            return RelationshipState.SUBJECT_LIKED

        if await match_repo.get_latest_match(session, viewer_id, subject_id) is not None:
            return RelationshipState.UNMATCHED
        return RelationshipState.NONE

    # ------------------------------------------------------------------

    def _is_replaceable(self, like: LikeEdge) -> bool:
        """A pending like older than the cooldown window can be liked over."""
        return (
            like.status == LikeStatus.PENDING.value
            and self.clock() - like.created_at >= self.settings.like_cooldown
        )

    @staticmethod
    def _reject(reason: RejectionReason, retry_after: Optional[timedelta] = None) -> LikeOutcome:
        diagnostics.record(f"rejection:{reason.value}")
        logger.debug(f"Like rejected: {reason.value}")
        return LikeOutcome(is_match=False, rejection_reason=reason, retry_after=retry_after)

    @staticmethod
    def _reject_cancel(like_id: int, reason: RejectionReason) -> CancelOutcome:
        logger.debug(f"Cancel of like {like_id} rejected: {reason.value}")
        return CancelOutcome(cancelled=False, like_id=like_id, rejection_reason=reason)

    @staticmethod
    def _reject_mismatch(match_id: int, reason: RejectionReason) -> MismatchOutcome:
        logger.debug(f"Mismatch report on match {match_id} rejected: {reason.value}")
        return MismatchOutcome(dissolved=False, match_id=match_id, rejection_reason=reason)
