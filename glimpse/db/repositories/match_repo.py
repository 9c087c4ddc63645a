from datetime import datetime

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from glimpse.core.diagnostics import track_db
from glimpse.db.models import Match, MismatchReport


def canonical_pair(user_id_a: str, user_id_b: str) -> tuple[str, str]:
    """Order a pair the way matches store it."""
    return (user_id_a, user_id_b) if user_id_a < user_id_b else (user_id_b, user_id_a)


@track_db
async def create_match(
    session: AsyncSession,
    user1_id: str,
    user2_id: str,
    group_id: str,
    matched_at: datetime,
) -> Match:
    """Create a new match between two users."""
    user_a_id, user_b_id = canonical_pair(user1_id, user2_id)
    match = Match(
        user_a_id=user_a_id,
        user_b_id=user_b_id,
        group_id=group_id,
        matched_at=matched_at,
        active=True,
    )
    session.add(match)
    await session.flush()
    return match


@track_db
async def get_by_id(session: AsyncSession, match_id: int) -> Match | None:
    """Get a match by its ID."""
    query = select(Match).where(Match.id == match_id).execution_options(populate_existing=True)
    result = await session.execute(query)
    return result.scalar_one_or_none()


@track_db
async def get_active_match(session: AsyncSession, user1_id: str, user2_id: str, group_id: str) -> Match | None:
    """Get the active match between two users in a specific group."""
    user_a_id, user_b_id = canonical_pair(user1_id, user2_id)
    query = select(Match).where(
        Match.user_a_id == user_a_id,
        Match.user_b_id == user_b_id,
        Match.group_id == group_id,
        Match.active.is_(True),
    )
    result = await session.execute(query)
    return result.scalar_one_or_none()


@track_db
async def get_active_match_any_group(session: AsyncSession, user1_id: str, user2_id: str) -> Match | None:
    """Check if there's an active match between two users in any group."""
    user_a_id, user_b_id = canonical_pair(user1_id, user2_id)
    query = (
        select(Match)
        .where(Match.user_a_id == user_a_id, Match.user_b_id == user_b_id, Match.active.is_(True))
        .order_by(Match.matched_at.desc())
    )
    result = await session.execute(query)
    return result.scalars().first()


@track_db
async def get_latest_match(session: AsyncSession, user1_id: str, user2_id: str) -> Match | None:
    """Most recent match of a pair, active or not."""
    user_a_id, user_b_id = canonical_pair(user1_id, user2_id)
    query = (
        select(Match)
        .where(Match.user_a_id == user_a_id, Match.user_b_id == user_b_id)
        .order_by(Match.matched_at.desc(), Match.id.desc())
    )
    result = await session.execute(query)
    return result.scalars().first()


@track_db
async def get_matches_for_user(session: AsyncSession, user_id: str, active_only: bool = True) -> list[Match]:
    """Get all matches for a user."""
    query = (
        select(Match)
        .where(or_(Match.user_a_id == user_id, Match.user_b_id == user_id))
        .order_by(Match.matched_at.desc())
    )
    if active_only:
        query = query.where(Match.active.is_(True))
    result = await session.execute(query)
    return list(result.scalars().all())


@track_db
async def deactivate(session: AsyncSession, match: Match, ended_at: datetime, reason: str) -> Match:
    """Deactivate a match. Matches are never hard-deleted."""
    match.active = False
    match.ended_at = ended_at
    match.ended_reason = reason[:255]
    await session.flush()
    return match


@track_db
async def create_mismatch_report(session: AsyncSession, match_id: int, reporter_id: str, reason: str) -> MismatchReport:
    report = MismatchReport(match_id=match_id, reporter_id=reporter_id, reason=reason[:500])
    session.add(report)
    await session.flush()
    return report


@track_db
async def get_mismatch_reports(session: AsyncSession, match_id: int) -> list[MismatchReport]:
    query = select(MismatchReport).where(MismatchReport.match_id == match_id).order_by(MismatchReport.created_at)
    result = await session.execute(query)
    return list(result.scalars().all())
