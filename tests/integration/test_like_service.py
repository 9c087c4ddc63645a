import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from glimpse.core.credit_ledger import DebitResult
from glimpse.core.events import LikeReceived, MatchCreated
from glimpse.core.identity_reveal import ProfileField, RelationshipState, visible_fields
from glimpse.core.like_service import RejectionReason
from glimpse.db.models import LikeCooldown, LikeEdge, LikeStatus, Match
from glimpse.db.repositories import credit_repo, match_repo, user_repo
from tests.fixtures.database import TEST_GROUP


async def count_matches(session_maker, **filters) -> int:
    async with session_maker() as session:
        query = select(func.count(Match.id)).filter_by(**filters)
        return (await session.execute(query)).scalar_one()


async def likes_from(session_maker, user_id: str) -> list[LikeEdge]:
    async with session_maker() as session:
        result = await session.execute(select(LikeEdge).where(LikeEdge.from_user_id == user_id).order_by(LikeEdge.id))
        return list(result.scalars().all())


@pytest.mark.likes
async def test_first_like_consumes_free_like_without_match(test_session, test_session_maker, like_service, recorder, alice, bob):
    outcome = await like_service.send_like(test_session, alice, bob, TEST_GROUP)

    assert outcome.accepted
    assert outcome.is_match is False
    assert outcome.debit is DebitResult.CONSUMED_FREE
    assert outcome.match_id is None

    async with test_session_maker() as session:
        balance = await credit_repo.get_balance(session, alice)
        assert balance.free_like_available is False

    assert recorder.events == [LikeReceived(like_id=outcome.like_id, to_user_id=bob, group_id=TEST_GROUP, is_super=False)]


@pytest.mark.matching
async def test_reciprocal_like_creates_match(test_session, test_session_maker, like_service, recorder, alice, bob):
    first = await like_service.send_like(test_session, alice, bob, TEST_GROUP)
    second = await like_service.send_like(test_session, bob, alice, TEST_GROUP)

    assert first.is_match is False
    assert second.is_match is True
    assert second.debit is DebitResult.CONSUMED_FREE
    assert await count_matches(test_session_maker, active=True) == 1

    async with test_session_maker() as session:
        match = await match_repo.get_by_id(session, second.match_id)
        assert match.active
        assert (match.user_a_id, match.user_b_id) == tuple(sorted((alice, bob)))
        assert match.chat_channel_id == f"match-{TEST_GROUP}-{match.id}"

    for user_id in (alice, bob):
        edges = await likes_from(test_session_maker, user_id)
        assert [edge.status for edge in edges] == [LikeStatus.MATCHED.value]
        assert edges[0].match_id == second.match_id

    async with test_session_maker() as session:
        for viewer, subject in ((alice, bob), (bob, alice)):
            state = await like_service.relationship_state(session, viewer, subject, TEST_GROUP)
            assert state is RelationshipState.MATCHED
            assert ProfileField.NICKNAME in visible_fields(viewer, subject, state)

    assert isinstance(recorder.events[-1], MatchCreated)
    assert recorder.events[-1].match_id == second.match_id


@pytest.mark.likes
async def test_no_credits_leaves_likes_untouched(test_session, test_session_maker, like_service, alice, bob, carol):
    await like_service.send_like(test_session, alice, bob, TEST_GROUP)

    outcome = await like_service.send_like(test_session, alice, carol, TEST_GROUP)

    assert outcome.rejection_reason is RejectionReason.NO_CREDITS
    assert outcome.like_id is None
    assert len(await likes_from(test_session_maker, alice)) == 1
    async with test_session_maker() as session:
        assert await session.get(LikeCooldown, (alice, carol)) is None


@pytest.mark.likes
async def test_purchased_credit_is_used_after_free_like(test_session, like_service, ledger, alice, bob, carol):
    await ledger.credit(test_session, alice, 1)
    await test_session.commit()

    first = await like_service.send_like(test_session, alice, bob, TEST_GROUP)
    second = await like_service.send_like(test_session, alice, carol, TEST_GROUP)

    assert first.debit is DebitResult.CONSUMED_FREE
    assert second.debit is DebitResult.CONSUMED_PURCHASED


@pytest.mark.likes
async def test_self_like_is_forbidden(test_session, like_service, alice):
    outcome = await like_service.send_like(test_session, alice, alice, TEST_GROUP)
    assert outcome.rejection_reason is RejectionReason.SELF_LIKE_FORBIDDEN


@pytest.mark.likes
async def test_likes_require_a_shared_group(test_session, like_service, make_user, alice):
    outsider = await make_user("Dave", groups=("group-2",))

    outcome = await like_service.send_like(test_session, alice, outsider, TEST_GROUP)
    assert outcome.rejection_reason is RejectionReason.NOT_GROUP_MEMBER

    outcome = await like_service.send_like(test_session, outsider, alice, "group-2")
    assert outcome.rejection_reason is RejectionReason.NOT_GROUP_MEMBER


@pytest.mark.likes
async def test_super_like_requires_premium(test_session, like_service, make_user, alice, bob):
    outcome = await like_service.send_like(test_session, alice, bob, TEST_GROUP, is_super=True)
    assert outcome.rejection_reason is RejectionReason.PREMIUM_REQUIRED

    premium = await make_user("Erin", is_premium=True)
    outcome = await like_service.send_like(test_session, premium, bob, TEST_GROUP, is_super=True)
    assert outcome.accepted


@pytest.mark.cooldown
async def test_repeat_like_inside_cooldown_is_rejected(test_session, like_service, clock, alice, carol):
    await like_service.send_like(test_session, alice, carol, TEST_GROUP)

    outcome = await like_service.send_like(test_session, alice, carol, TEST_GROUP)
    assert outcome.rejection_reason is RejectionReason.COOLDOWN_ACTIVE
    assert outcome.retry_after == timedelta(days=14)

    clock.advance(days=3)
    outcome = await like_service.send_like(test_session, alice, carol, TEST_GROUP)
    assert outcome.rejection_reason is RejectionReason.COOLDOWN_ACTIVE
    assert outcome.retry_after == timedelta(days=11)


@pytest.mark.cooldown
async def test_like_after_cooldown_replaces_the_old_like(test_session, test_session_maker, like_service, ledger, clock, alice, carol):
    first = await like_service.send_like(test_session, alice, carol, TEST_GROUP)

    clock.advance(days=14)
    await ledger.reset_free_likes(test_session)
    await test_session.commit()

    second = await like_service.send_like(test_session, alice, carol, TEST_GROUP)
    assert second.accepted
    assert second.like_id != first.like_id

    edges = await likes_from(test_session_maker, alice)
    assert [(edge.id, edge.status) for edge in edges] == [
        (first.like_id, LikeStatus.EXPIRED.value),
        (second.like_id, LikeStatus.PENDING.value),
    ]


@pytest.mark.cooldown
async def test_cooldown_applies_across_groups(test_session, like_service, make_user):
    frank = await make_user("Frank", groups=(TEST_GROUP, "group-2"))
    gina = await make_user("Gina", groups=(TEST_GROUP, "group-2"))
    await like_service.send_like(test_session, frank, gina, TEST_GROUP)

    outcome = await like_service.send_like(test_session, frank, gina, "group-2")
    assert outcome.rejection_reason is RejectionReason.COOLDOWN_ACTIVE


@pytest.mark.cooldown
async def test_super_like_does_not_bypass_cooldown_by_default(test_session, like_service, make_user, bob):
    premium = await make_user("Gina", is_premium=True)
    await like_service.send_like(test_session, premium, bob, TEST_GROUP)

    outcome = await like_service.send_like(test_session, premium, bob, TEST_GROUP, is_super=True)
    assert outcome.rejection_reason is RejectionReason.COOLDOWN_ACTIVE


@pytest.mark.cooldown
async def test_super_like_bypass_flag(test_session, test_settings, like_service, make_user, bob):
    like_service.settings = test_settings.model_copy(update={"SUPER_LIKE_BYPASSES_COOLDOWN": True})
    premium = await make_user("Hana", is_premium=True)
    await like_service.send_like(test_session, premium, bob, TEST_GROUP)

    # The cooldown is skipped, the pending like in the group still blocks a duplicate
    outcome = await like_service.send_like(test_session, premium, bob, TEST_GROUP, is_super=True)
    assert outcome.rejection_reason is RejectionReason.ALREADY_LIKED


@pytest.mark.likes
async def test_cancel_pending_like_refunds_and_keeps_cooldown(test_session, test_session_maker, like_service, clock, alice, bob):
    sent = await like_service.send_like(test_session, alice, bob, TEST_GROUP)
    clock.advance(hours=2)

    outcome = await like_service.cancel_like(test_session, sent.like_id, alice)

    assert outcome.cancelled
    assert outcome.refunded
    async with test_session_maker() as session:
        like = await session.get(LikeEdge, sent.like_id)
        assert like.status == LikeStatus.CANCELLED.value
        assert like.cancelled_at == clock()
        assert (await credit_repo.get_balance(session, alice)).free_like_available is True

    again = await like_service.send_like(test_session, alice, bob, TEST_GROUP)
    assert again.rejection_reason is RejectionReason.COOLDOWN_ACTIVE


@pytest.mark.likes
async def test_cancel_rules(test_session, like_service, clock, alice, bob, carol):
    sent = await like_service.send_like(test_session, alice, bob, TEST_GROUP)

    outcome = await like_service.cancel_like(test_session, sent.like_id, bob)
    assert outcome.rejection_reason is RejectionReason.NOT_SENDER

    outcome = await like_service.cancel_like(test_session, 999_999, alice)
    assert outcome.rejection_reason is RejectionReason.NOT_FOUND

    clock.advance(hours=24)
    outcome = await like_service.cancel_like(test_session, sent.like_id, alice)
    assert outcome.rejection_reason is RejectionReason.CANCEL_WINDOW_EXPIRED


@pytest.mark.likes
async def test_cancel_after_match_is_rejected(test_session, like_service, alice, bob):
    sent = await like_service.send_like(test_session, alice, bob, TEST_GROUP)
    await like_service.send_like(test_session, bob, alice, TEST_GROUP)

    outcome = await like_service.cancel_like(test_session, sent.like_id, alice)
    assert outcome.cancelled is False
    assert outcome.rejection_reason is RejectionReason.ALREADY_MATCHED


@pytest.mark.likes
async def test_cancel_after_match_dissolved_is_still_already_matched(test_session, test_session_maker, like_service, alice, bob):
    sent = await like_service.send_like(test_session, alice, bob, TEST_GROUP)
    matched = await like_service.send_like(test_session, bob, alice, TEST_GROUP)
    await like_service.report_mismatch(test_session, matched.match_id, bob)

    outcome = await like_service.cancel_like(test_session, sent.like_id, alice)

    assert outcome.cancelled is False
    assert outcome.rejection_reason is RejectionReason.ALREADY_MATCHED
    async with test_session_maker() as session:
        like = await session.get(LikeEdge, sent.like_id)
        assert like.status == LikeStatus.DISSOLVED.value
        assert (await credit_repo.get_balance(session, alice)).free_like_available is False


@pytest.mark.likes
async def test_cancelled_like_cannot_be_cancelled_twice(test_session, like_service, alice, bob):
    sent = await like_service.send_like(test_session, alice, bob, TEST_GROUP)
    await like_service.cancel_like(test_session, sent.like_id, alice)

    outcome = await like_service.cancel_like(test_session, sent.like_id, alice)
    assert outcome.rejection_reason is RejectionReason.NOT_FOUND


@pytest.mark.matching
async def test_existing_active_match_is_reused(test_session, test_session_maker, like_service, clock, alice, bob):
    async with test_session_maker() as session:
        existing = await match_repo.create_match(session, alice, bob, TEST_GROUP, clock())
        await session.commit()

    await like_service.send_like(test_session, alice, bob, TEST_GROUP)
    outcome = await like_service.send_like(test_session, bob, alice, TEST_GROUP)

    assert outcome.is_match
    assert outcome.match_id == existing.id
    assert await count_matches(test_session_maker, active=True) == 1


@pytest.mark.matching
async def test_concurrent_crossing_likes_create_exactly_one_match(test_session_maker, like_service, alice, bob):
    async with test_session_maker() as first, test_session_maker() as second:
        outcomes = await asyncio.gather(
            like_service.send_like(first, alice, bob, TEST_GROUP),
            like_service.send_like(second, bob, alice, TEST_GROUP),
        )

    assert all(outcome.accepted for outcome in outcomes)
    assert sorted(outcome.is_match for outcome in outcomes) == [False, True]
    assert await count_matches(test_session_maker, active=True) == 1


@pytest.mark.credits
async def test_concurrent_likes_cannot_double_spend(test_session_maker, like_service, alice, bob, carol):
    async with test_session_maker() as first, test_session_maker() as second:
        outcomes = await asyncio.gather(
            like_service.send_like(first, alice, bob, TEST_GROUP),
            like_service.send_like(second, alice, carol, TEST_GROUP),
        )

    reasons = sorted(str(outcome.rejection_reason) for outcome in outcomes)
    assert sum(outcome.accepted for outcome in outcomes) == 1
    assert any(outcome.rejection_reason is RejectionReason.NO_CREDITS for outcome in outcomes), reasons
    assert len(await likes_from(test_session_maker, alice)) == 1


@pytest.mark.likes
async def test_received_likes_are_masked_for_premium_only(test_session, test_session_maker, like_service, alice, bob):
    await like_service.send_like(test_session, alice, bob, TEST_GROUP)

    received = await like_service.received_likes(test_session, bob)
    assert received.total == 1
    assert received.likes[0].from_pseudonym is None

    async with test_session_maker() as session:
        await user_repo.set_premium(session, bob, True)
        await session.commit()

    received = await like_service.received_likes(test_session, bob)
    assert received.likes[0].from_pseudonym == "A****"


@pytest.mark.likes
async def test_sent_likes_and_stats(test_session, like_service, ledger, clock, alice, bob, carol):
    await ledger.credit(test_session, alice, 1)
    await test_session.commit()
    await like_service.send_like(test_session, alice, bob, TEST_GROUP)
    await like_service.send_like(test_session, alice, carol, TEST_GROUP)
    await like_service.send_like(test_session, bob, alice, TEST_GROUP)

    clock.advance(hours=1)
    sent = await like_service.sent_likes(test_session, alice)
    by_target = {like.to_user_id: like for like in sent}
    assert by_target[bob].status == LikeStatus.MATCHED.value
    assert by_target[bob].can_cancel is False
    assert by_target[carol].can_cancel is True

    stats = await like_service.like_stats(test_session, alice)
    assert (stats.sent, stats.received, stats.matches) == (2, 0, 1)

    matches = await like_service.list_matches(test_session, alice)
    assert [match.partner_id for match in matches] == [bob]


@pytest.mark.likes
async def test_relationship_states_before_match(test_session, like_service, alice, bob, carol):
    assert await like_service.relationship_state(test_session, alice, bob) is RelationshipState.NONE

    await like_service.send_like(test_session, alice, bob, TEST_GROUP)

    assert await like_service.relationship_state(test_session, alice, bob) is RelationshipState.VIEWER_LIKED
    assert await like_service.relationship_state(test_session, bob, alice) is RelationshipState.SUBJECT_LIKED
    assert await like_service.relationship_state(test_session, bob, alice, "other-group") is RelationshipState.NONE
    assert await like_service.relationship_state(test_session, carol, alice) is RelationshipState.NONE


async def make_match(session, like_service, user1, user2) -> int:
    await like_service.send_like(session, user1, user2, TEST_GROUP)
    outcome = await like_service.send_like(session, user2, user1, TEST_GROUP)
    assert outcome.is_match
    return outcome.match_id


@pytest.mark.matching
async def test_mismatch_dissolves_the_match(test_session, test_session_maker, like_service, recorder, clock, alice, bob):
    match_id = await make_match(test_session, like_service, alice, bob)
    clock.advance(days=3)

    outcome = await like_service.report_mismatch(test_session, match_id, alice, "Not who I thought")

    assert outcome.dissolved
    async with test_session_maker() as session:
        match = await match_repo.get_by_id(session, match_id)
        assert match.active is False
        assert match.ended_at == clock()

        reports = await match_repo.get_mismatch_reports(session, match_id)
        assert [(report.reporter_id, report.reason) for report in reports] == [(alice, "Not who I thought")]

        state = await like_service.relationship_state(session, bob, alice)
        assert state is RelationshipState.UNMATCHED
        assert ProfileField.NICKNAME not in visible_fields(bob, alice, state, {"company"})

    for user_id in (alice, bob):
        edges = await likes_from(test_session_maker, user_id)
        assert [edge.status for edge in edges] == [LikeStatus.DISSOLVED.value]

    assert recorder.events[-1].match_id == match_id
    assert await like_service.list_matches(test_session, alice) == []


@pytest.mark.cooldown
async def test_mismatch_restarts_cooldown_both_ways(test_session, like_service, ledger, clock, alice, bob):
    match_id = await make_match(test_session, like_service, alice, bob)
    clock.advance(days=10)
    await like_service.report_mismatch(test_session, match_id, bob)
    await ledger.reset_free_likes(test_session)
    await test_session.commit()

    for sender, target in ((alice, bob), (bob, alice)):
        outcome = await like_service.send_like(test_session, sender, target, TEST_GROUP)
        assert outcome.rejection_reason is RejectionReason.COOLDOWN_ACTIVE
        assert outcome.retry_after == timedelta(days=14)

    clock.advance(days=14)
    outcome = await like_service.send_like(test_session, alice, bob, TEST_GROUP)
    assert outcome.accepted
    assert outcome.is_match is False


@pytest.mark.matching
async def test_mismatch_does_not_refund_credits(test_session, test_session_maker, like_service, alice, bob):
    match_id = await make_match(test_session, like_service, alice, bob)

    await like_service.report_mismatch(test_session, match_id, alice)

    async with test_session_maker() as session:
        for user_id in (alice, bob):
            balance = await credit_repo.get_balance(session, user_id)
            assert balance.free_like_available is False


@pytest.mark.matching
async def test_mismatch_rules(test_session, like_service, alice, bob, carol):
    match_id = await make_match(test_session, like_service, alice, bob)

    outcome = await like_service.report_mismatch(test_session, match_id, carol)
    assert outcome.rejection_reason is RejectionReason.NOT_PARTICIPANT

    outcome = await like_service.report_mismatch(test_session, 999_999, alice)
    assert outcome.rejection_reason is RejectionReason.NOT_FOUND

    await like_service.report_mismatch(test_session, match_id, alice)
    outcome = await like_service.report_mismatch(test_session, match_id, bob)
    assert outcome.rejection_reason is RejectionReason.ALREADY_INACTIVE
