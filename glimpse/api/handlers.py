import math

from aiohttp import web
from loguru import logger
from sqlalchemy.exc import IntegrityError

from glimpse.api.keys import (
    CREDIT_LEDGER,
    DB_SESSION,
    INTEREST_SERVICE,
    LIKE_SERVICE,
    MATCH_CHAT,
    SETTINGS,
    USER_ID,
)
from glimpse.api.middlewares import json_error
from glimpse.api.schemas import (
    LikeRequest,
    MismatchRequest,
    OpenRequest,
    PaymentWebhook,
    SealRequest,
    isoformat,
)
from glimpse.core import diagnostics
from glimpse.core.credentials import verify_signature
from glimpse.core.identity_reveal import render_profile, visible_fields
from glimpse.core.interest_service import InterestRequest
from glimpse.core.like_service import RejectionReason
from glimpse.db.repositories import group_member_repo, user_repo

SIGNATURE_HEADER = "X-Glimpse-Signature"
# Largest value a BIGINT primary key can hold
MAX_ID = 2**63 - 1

REJECTION_STATUS = {
    RejectionReason.SELF_LIKE_FORBIDDEN: 400,
    RejectionReason.NO_CREDITS: 402,
    RejectionReason.PREMIUM_REQUIRED: 403,
    RejectionReason.NOT_GROUP_MEMBER: 403,
    RejectionReason.NOT_SENDER: 403,
    RejectionReason.NOT_PARTICIPANT: 403,
    RejectionReason.NOT_FOUND: 404,
    RejectionReason.COOLDOWN_ACTIVE: 409,
    RejectionReason.ALREADY_LIKED: 409,
    RejectionReason.CANCEL_WINDOW_EXPIRED: 409,
    RejectionReason.ALREADY_MATCHED: 409,
    RejectionReason.ALREADY_INACTIVE: 409,
}


async def _read_json(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    body = await request.json()
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text='{"error":"invalid_request"}', content_type="application/json")
    return body


def _int_param(request: web.Request, name: str) -> int:
    """Path id as an int. Anything that cannot be a stored row id is a 404."""
    try:
        value = int(request.match_info[name])
    except ValueError:
        value = None
    if value is None or not 1 <= value <= MAX_ID:
        raise web.HTTPNotFound(text='{"error":"not_found"}', content_type="application/json")
    return value


async def health(request: web.Request) -> web.Response:
    return web.json_response({
        "status": "ok",
        "service": "glimpse",
        "diagnostics": diagnostics.get_diagnostics_report(),
    })


# Likes

async def send_like(request: web.Request) -> web.Response:
    body = LikeRequest.model_validate(await _read_json(request))
    outcome = await request.app[LIKE_SERVICE].send_like(
        request[DB_SESSION], request[USER_ID], body.to_user_id, body.group_id, body.is_super
    )
    if not outcome.accepted:
        payload = {"isMatch": False, "rejectionReason": outcome.rejection_reason.value}
        if outcome.retry_after is not None:
            payload["retryAfterSeconds"] = math.ceil(outcome.retry_after.total_seconds())
        return web.json_response(payload, status=REJECTION_STATUS[outcome.rejection_reason])

    payload = {"isMatch": outcome.is_match, "likeId": outcome.like_id}
    if outcome.match_id is not None:
        payload["matchId"] = outcome.match_id
    return web.json_response(payload, status=201)


async def cancel_like(request: web.Request) -> web.Response:
    like_id = _int_param(request, "like_id")
    outcome = await request.app[LIKE_SERVICE].cancel_like(request[DB_SESSION], like_id, request[USER_ID])
    if not outcome.cancelled:
        return web.json_response(
            {"rejectionReason": outcome.rejection_reason.value},
            status=REJECTION_STATUS[outcome.rejection_reason],
        )
    return web.Response(status=204)


async def received_likes(request: web.Request) -> web.Response:
    received = await request.app[LIKE_SERVICE].received_likes(request[DB_SESSION], request[USER_ID])
    return web.json_response({
        "total": received.total,
        "likes": [
            {
                "likeId": like.like_id,
                "groupId": like.group_id,
                "isSuper": like.is_super,
                "createdAt": isoformat(like.created_at),
                "fromPseudonym": like.from_pseudonym,
            }
            for like in received.likes
        ],
    })


async def sent_likes(request: web.Request) -> web.Response:
    likes = await request.app[LIKE_SERVICE].sent_likes(request[DB_SESSION], request[USER_ID])
    return web.json_response({
        "likes": [
            {
                "likeId": like.like_id,
                "toUserId": like.to_user_id,
                "groupId": like.group_id,
                "isSuper": like.is_super,
                "status": like.status,
                "createdAt": isoformat(like.created_at),
                "canCancel": like.can_cancel,
            }
            for like in likes
        ],
    })


async def like_stats(request: web.Request) -> web.Response:
    stats = await request.app[LIKE_SERVICE].like_stats(request[DB_SESSION], request[USER_ID])
    return web.json_response({"sent": stats.sent, "received": stats.received, "matches": stats.matches})


# Matches

async def list_matches(request: web.Request) -> web.Response:
    matches = await request.app[LIKE_SERVICE].list_matches(request[DB_SESSION], request[USER_ID])
    return web.json_response({
        "matches": [
            {
                "matchId": match.match_id,
                "partnerId": match.partner_id,
                "groupId": match.group_id,
                "matchedAt": isoformat(match.matched_at),
                "chatChannelId": match.chat_channel_id,
            }
            for match in matches
        ],
    })


async def report_mismatch(request: web.Request) -> web.Response:
    match_id = _int_param(request, "match_id")
    body = MismatchRequest.model_validate(await _read_json(request))
    outcome = await request.app[LIKE_SERVICE].report_mismatch(
        request[DB_SESSION], match_id, request[USER_ID], body.reason
    )
    if not outcome.dissolved:
        return web.json_response(
            {"matchId": match_id, "rejectionReason": outcome.rejection_reason.value},
            status=REJECTION_STATUS[outcome.rejection_reason],
        )
    return web.json_response({"matchId": match_id, "active": False})


async def seal_message(request: web.Request) -> web.Response:
    match_id = _int_param(request, "match_id")
    body = SealRequest.model_validate(await _read_json(request))
    sealed = await request.app[MATCH_CHAT].seal(request[DB_SESSION], match_id, request[USER_ID], body.plaintext)
    return web.json_response({
        "matchId": sealed.match_id,
        "channelId": sealed.channel_id,
        "envelope": sealed.envelope,
    })


async def open_message(request: web.Request) -> web.Response:
    match_id = _int_param(request, "match_id")
    body = OpenRequest.model_validate(await _read_json(request))
    plaintext = await request.app[MATCH_CHAT].open(request[DB_SESSION], match_id, request[USER_ID], body.envelope)
    return web.json_response({"matchId": match_id, "plaintext": plaintext})


# Credits and profiles

async def get_credits(request: web.Request) -> web.Response:
    session = request[DB_SESSION]
    ledger = request.app[CREDIT_LEDGER]
    user_id = request[USER_ID]
    if await user_repo.get(session, user_id) is None:
        return json_error(404, "unknown_user")
    balance = await ledger.get_balance(session, user_id)
    can_send = await ledger.can_send_like(session, user_id)
    await session.commit()
    return web.json_response({
        "freeLikeAvailable": balance.free_like_available,
        "purchasedCredits": balance.purchased_credits,
        "unlimitedUntil": isoformat(balance.unlimited_until),
        "canSendLike": can_send,
    })


async def get_profile(request: web.Request) -> web.Response:
    session = request[DB_SESSION]
    viewer_id = request[USER_ID]
    subject = await user_repo.get(session, request.match_info["user_id"])
    if subject is None:
        return json_error(404, "not_found")

    group_id = request.query.get("groupId") or None
    state = await request.app[LIKE_SERVICE].relationship_state(session, viewer_id, subject.id, group_id)
    fields = visible_fields(viewer_id, subject.id, state, subject.revealed_field_names)

    subject_groups = await group_member_repo.get_active_group_ids(session, subject.id)
    if viewer_id != subject.id:
        # Only groups the viewer shares with the subject
        viewer_groups = set(await group_member_repo.get_active_group_ids(session, viewer_id))
        subject_groups = [group for group in subject_groups if group in viewer_groups]

    return web.json_response({
        "relationshipState": state.value,
        "profile": render_profile(subject, fields, subject_groups),
    })


# Interests

def _interest_view(registration, counterpart_count=None, created=None) -> dict:
    view = {
        "id": registration.id,
        "correlationId": registration.correlation_id,
        "registrationType": registration.registration_type,
        "interestType": registration.interest_type,
        "relationshipIntent": registration.relationship_intent,
        "displayValue": registration.display_value,
        "createdAt": isoformat(registration.created_at),
        "expiresAt": isoformat(registration.expires_at),
    }
    if counterpart_count is not None:
        view["counterpartCount"] = counterpart_count
    if created is not None:
        view["created"] = created
    return view


async def put_interest(request: web.Request) -> web.Response:
    service = request.app[INTEREST_SERVICE]
    correlation_id = request.match_info["correlation_id"]
    if len(correlation_id) > 64:
        return json_error(400, "invalid_correlation_id")
    body = InterestRequest.model_validate(await _read_json(request))
    result = await service.upsert(request[DB_SESSION], request[USER_ID], correlation_id, body)
    return web.json_response(
        _interest_view(result.registration, result.counterpart_count, result.created),
        status=201 if result.created else 200,
    )


async def list_interests(request: web.Request) -> web.Response:
    registrations = await request.app[INTEREST_SERVICE].list_for_user(request[DB_SESSION], request[USER_ID])
    return web.json_response({"interests": [_interest_view(reg) for reg in registrations]})


# Payment collaborator

async def payment_webhook(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS]
    raw = await request.read()
    if not verify_signature(raw, request.headers.get(SIGNATURE_HEADER), settings.PAYMENT_WEBHOOK_SECRET):
        logger.warning(f"Payment webhook with invalid signature from {request.remote}")
        return json_error(401, "invalid_signature")

    body = PaymentWebhook.model_validate_json(raw)
    if body.status != "completed":
        logger.info(f"Ignoring payment {body.payment_id} with status {body.status}")
        return web.json_response({"paymentId": body.payment_id, "applied": False}, status=202)

    session = request[DB_SESSION]
    if await user_repo.get(session, body.user_id) is None:
        return json_error(404, "unknown_user")

    ledger = request.app[CREDIT_LEDGER]
    try:
        result = await ledger.apply_purchase(session, body.payment_id, body.user_id, body.credits, body.unlimited_days)
        await session.commit()
    except ValueError as e:
        await session.rollback()
        return json_error(400, "invalid_purchase", detail=str(e))
    except IntegrityError:
        # Concurrent delivery of the same payment already applied it
        await session.rollback()
        logger.info(f"Payment {body.payment_id} applied concurrently")
        return web.json_response({"paymentId": body.payment_id, "applied": False})

    return web.json_response({
        "paymentId": result.payment_id,
        "applied": result.applied,
        "purchasedCredits": result.credits,
        "unlimitedUntil": isoformat(result.unlimited_until),
    })
