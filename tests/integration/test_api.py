import json

import pytest
from aiohttp import web

from glimpse.core.credentials import sign_payload
from tests.fixtures.api import auth
from tests.fixtures.database import TEST_GROUP
from tests.fixtures.services import TEST_WEBHOOK_SECRET

pytestmark = pytest.mark.api


async def like(client, sender, target, **extra):
    return await client.post("/likes", json={"toUserId": target, "groupId": TEST_GROUP, **extra}, headers=auth(sender))


def signed(body: dict) -> tuple[bytes, dict]:
    raw = json.dumps(body).encode()
    return raw, {"X-Glimpse-Signature": sign_payload(raw, TEST_WEBHOOK_SECRET), "Content-Type": "application/json"}


async def test_health_is_public(api_client):
    resp = await api_client.get("/health")
    assert resp.status == 200
    data = await resp.json()
    assert data["status"] == "ok"
    assert "counters" in data["diagnostics"]


async def test_missing_identity_is_unauthorized(api_client):
    resp = await api_client.get("/likes/stats")
    assert resp.status == 401
    assert (await resp.json())["error"] == "unauthorized"


async def test_request_state_uses_typed_keys(api_client, recwarn, alice, bob):
    await like(api_client, alice, bob)
    await api_client.get("/likes/sent", headers=auth(alice))

    assert not [w for w in recwarn if issubclass(w.category, web.NotAppKeyWarning)]


async def test_like_then_match(api_client, alice, bob):
    resp = await like(api_client, alice, bob)
    assert resp.status == 201
    first = await resp.json()
    assert first["isMatch"] is False
    assert "matchId" not in first

    resp = await like(api_client, bob, alice)
    assert resp.status == 201
    second = await resp.json()
    assert second["isMatch"] is True

    resp = await api_client.get("/matches", headers=auth(alice))
    matches = (await resp.json())["matches"]
    assert [(m["matchId"], m["partnerId"]) for m in matches] == [(second["matchId"], bob)]
    assert matches[0]["chatChannelId"] == f"match-{TEST_GROUP}-{second['matchId']}"


async def test_rejections_map_to_statuses(api_client, alice, bob, carol):
    resp = await like(api_client, alice, alice)
    assert resp.status == 400
    assert (await resp.json())["rejectionReason"] == "SELF_LIKE_FORBIDDEN"

    resp = await like(api_client, alice, bob, isSuper=True)
    assert resp.status == 403
    assert (await resp.json())["rejectionReason"] == "PREMIUM_REQUIRED"

    await like(api_client, alice, bob)
    resp = await like(api_client, alice, bob)
    assert resp.status == 409
    data = await resp.json()
    assert data == {"isMatch": False, "rejectionReason": "COOLDOWN_ACTIVE", "retryAfterSeconds": 14 * 24 * 3600}

    resp = await like(api_client, alice, carol)
    assert resp.status == 402
    assert (await resp.json())["rejectionReason"] == "NO_CREDITS"


async def test_invalid_like_body(api_client, alice):
    resp = await api_client.post("/likes", json={"groupId": TEST_GROUP}, headers=auth(alice))
    assert resp.status == 400
    assert (await resp.json())["error"] == "invalid_request"

    resp = await api_client.post("/likes", data="{not json", headers=auth(alice))
    assert resp.status == 400


async def test_cancel_like(api_client, alice, bob):
    like_id = (await (await like(api_client, alice, bob)).json())["likeId"]

    resp = await api_client.delete(f"/likes/{like_id}", headers=auth(bob))
    assert resp.status == 403

    resp = await api_client.delete(f"/likes/{like_id}", headers=auth(alice))
    assert resp.status == 204

    resp = await api_client.get("/credits", headers=auth(alice))
    assert (await resp.json())["freeLikeAvailable"] is True

    resp = await api_client.delete(f"/likes/{like_id}", headers=auth(alice))
    assert resp.status == 404


async def test_received_sent_and_stats(api_client, alice, bob):
    await like(api_client, alice, bob)

    received = await (await api_client.get("/likes/received", headers=auth(bob))).json()
    assert received["total"] == 1
    assert received["likes"][0]["fromPseudonym"] is None

    sent = await (await api_client.get("/likes/sent", headers=auth(alice))).json()
    assert sent["likes"][0]["toUserId"] == bob
    assert sent["likes"][0]["canCancel"] is True

    stats = await (await api_client.get("/likes/stats", headers=auth(alice))).json()
    assert stats == {"sent": 1, "received": 0, "matches": 0}


async def test_mismatch_endpoint(api_client, alice, bob, carol):
    await like(api_client, alice, bob)
    match_id = (await (await like(api_client, bob, alice)).json())["matchId"]

    resp = await api_client.post(f"/matches/{match_id}/mismatch", json={}, headers=auth(carol))
    assert resp.status == 403

    resp = await api_client.post(f"/matches/{match_id}/mismatch", json={"reason": "wrong person"}, headers=auth(alice))
    assert resp.status == 200
    assert await resp.json() == {"matchId": match_id, "active": False}

    resp = await api_client.post(f"/matches/{match_id}/mismatch", headers=auth(bob))
    assert resp.status == 409

    resp = await api_client.post("/matches/not-a-number/mismatch", headers=auth(bob))
    assert resp.status == 404


@pytest.mark.parametrize("raw_id", ["99999999999999999999", str(2**63), "0", "-5"])
async def test_ids_outside_the_key_range_are_not_found(api_client, alice, raw_id):
    requests = [
        api_client.delete(f"/likes/{raw_id}", headers=auth(alice)),
        api_client.post(f"/matches/{raw_id}/mismatch", headers=auth(alice)),
        api_client.post(f"/matches/{raw_id}/messages/seal", json={"plaintext": "hi"}, headers=auth(alice)),
        api_client.post(f"/matches/{raw_id}/messages/open", json={"envelope": "AAAA"}, headers=auth(alice)),
    ]
    for request in requests:
        resp = await request
        assert resp.status == 404
        assert (await resp.json())["error"] == "not_found"


async def test_profile_reveal_follows_relationship(api_client, alice, bob):
    resp = await api_client.get(f"/users/{alice}/profile", headers=auth(bob))
    data = await resp.json()
    assert data["relationshipState"] == "none"
    assert data["profile"]["pseudonym"] == "A****"
    assert "nickname" not in data["profile"]
    assert "company" not in data["profile"]

    await like(api_client, alice, bob)
    await like(api_client, bob, alice)

    data = await (await api_client.get(f"/users/{alice}/profile", headers=auth(bob))).json()
    assert data["relationshipState"] == "matched"
    assert data["profile"]["nickname"] == "Alice"
    assert data["profile"]["company"] == "Acme"
    assert data["profile"]["groups"] == [TEST_GROUP]
    assert "phone_number" not in data["profile"]

    data = await (await api_client.get(f"/users/{bob}/profile", headers=auth(alice))).json()
    assert "real_name" not in data["profile"]

    resp = await api_client.get("/users/nobody/profile", headers=auth(alice))
    assert resp.status == 404


async def test_seal_and_open(api_client, alice, bob, carol):
    await like(api_client, alice, bob)
    match_id = (await (await like(api_client, bob, alice)).json())["matchId"]

    resp = await api_client.post(f"/matches/{match_id}/messages/seal", json={"plaintext": "hello"}, headers=auth(alice))
    assert resp.status == 200
    envelope = (await resp.json())["envelope"]

    resp = await api_client.post(f"/matches/{match_id}/messages/open", json={"envelope": envelope}, headers=auth(bob))
    assert (await resp.json())["plaintext"] == "hello"

    resp = await api_client.post(f"/matches/{match_id}/messages/open", json={"envelope": envelope}, headers=auth(carol))
    assert resp.status == 403

    resp = await api_client.post(f"/matches/{match_id}/messages/open", json={"envelope": "AAAA" + envelope[4:]}, headers=auth(bob))
    assert resp.status == 422


async def test_interest_sync(api_client, alice):
    body = {"registrationType": "my_info", "interest": {"interest_type": "school", "school_name": "Hanguk High"}}

    resp = await api_client.put("/interests/sync-1", json=body, headers=auth(alice))
    assert resp.status == 201
    created = await resp.json()
    assert created["displayValue"] == "Hanguk High"

    resp = await api_client.put("/interests/sync-1", json=body, headers=auth(alice))
    assert resp.status == 200
    assert (await resp.json())["id"] == created["id"]

    listed = await (await api_client.get("/interests", headers=auth(alice))).json()
    assert [item["correlationId"] for item in listed["interests"]] == ["sync-1"]


async def test_payment_webhook(api_client, alice):
    raw, headers = signed({"paymentId": "pay-1", "userId": alice, "status": "completed", "credits": 3})

    resp = await api_client.post("/payments/webhook", data=raw, headers={**headers, "X-Glimpse-Signature": "bad"})
    assert resp.status == 401

    resp = await api_client.post("/payments/webhook", data=raw, headers=headers)
    assert resp.status == 200
    assert (await resp.json())["applied"] is True

    resp = await api_client.post("/payments/webhook", data=raw, headers=headers)
    assert (await resp.json())["applied"] is False

    credits = await (await api_client.get("/credits", headers=auth(alice))).json()
    assert credits["purchasedCredits"] == 3
    assert credits["canSendLike"] is True


async def test_payment_webhook_ignores_incomplete_and_unknown(api_client):
    raw, headers = signed({"paymentId": "pay-2", "userId": "someone", "status": "pending"})
    resp = await api_client.post("/payments/webhook", data=raw, headers=headers)
    assert resp.status == 202

    raw, headers = signed({"paymentId": "pay-3", "userId": "someone", "status": "completed", "credits": 1})
    resp = await api_client.post("/payments/webhook", data=raw, headers=headers)
    assert resp.status == 404
