import pytest

from healthscan.waitlist.referral import code_for


@pytest.mark.asyncio
async def test_signup_and_repeat(client, service, dispatcher):
    r = await client.post("/email-waitlist", json={"email": "New@Example.com", "name": "New"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["position"] == 1
    assert body["referralCode"] == code_for("new@example.com")
    assert body["alreadyExists"] is False
    assert r.headers["X-RateLimit-Remaining"] == "4"

    r = await client.post("/email-waitlist", json={"email": "new@example.com "})
    assert r.status_code == 200
    assert r.json()["alreadyExists"] is True
    assert r.json()["position"] == 1
    await dispatcher.drain()


@pytest.mark.asyncio
async def test_request_context_is_stored(client, service, dispatcher, trusted_proxy):
    await client.post(
        "/email-waitlist",
        json={"email": "ctx@example.com", "utmSource": "twitter", "referralCode": "hs_someone"},
        headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1", "User-Agent": "pytest-agent"},
    )
    await dispatcher.drain()
    entry = service.get_entry("ctx@example.com")
    assert entry.ip_address == "203.0.113.9"
    assert entry.user_agent == "pytest-agent"
    assert entry.utm_source == "twitter"
    assert entry.referred_by == "hs_someone"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{}, {"email": ""}, {"email": "nope"}, {"email": 123}])
async def test_invalid_signup(client, payload):
    r = await client.post("/email-waitlist", json=payload)
    assert r.status_code == 400
    assert r.json()["success"] is False
    assert r.json()["errorType"] == "InvalidInput"


@pytest.mark.asyncio
async def test_sixth_signup_from_same_ip_is_rate_limited(client, dispatcher, trusted_proxy):
    headers = {"X-Forwarded-For": "198.51.100.7"}
    for i in range(5):
        r = await client.post("/email-waitlist", json={"email": f"u{i}@example.com"}, headers=headers)
        assert r.status_code == 200

    r = await client.post("/email-waitlist", json={"email": "u6@example.com"}, headers=headers)
    assert r.status_code == 429
    body = r.json()
    assert body["errorType"] == "RateLimited"
    assert body["retryAfterSeconds"] > 0
    assert r.headers["X-RateLimit-Remaining"] == "0"
    assert int(r.headers["Retry-After"]) == body["retryAfterSeconds"]

    other = await client.post(
        "/email-waitlist", json={"email": "u7@example.com"}, headers={"X-Forwarded-For": "198.51.100.8"}
    )
    assert other.status_code == 200
    await dispatcher.drain()


@pytest.mark.asyncio
async def test_rotating_forwarded_for_does_not_bypass_limit(client, service, dispatcher):
    statuses = []
    for i in range(8):
        r = await client.post(
            "/email-waitlist",
            json={"email": f"bot{i}@example.com"},
            headers={"X-Forwarded-For": f"203.0.113.{i + 1}"},
        )
        statuses.append(r.status_code)
    await dispatcher.drain()

    assert statuses == [200] * 5 + [429] * 3
    assert service.get_entry("bot0@example.com").ip_address == "127.0.0.1"


@pytest.mark.asyncio
async def test_confirm_email_flow(client, dispatcher, email_service):
    await client.post("/email-waitlist", json={"email": "c@example.com"})
    await dispatcher.drain()
    token = email_service.of_kind("confirmation")[0]["token"]

    r = await client.get("/confirm-email", params={"token": token})
    assert r.status_code == 200
    assert r.json()["alreadyConfirmed"] is False
    assert r.json()["position"] == 1

    r = await client.get("/confirm-email", params={"token": token})
    assert r.status_code == 200
    assert r.json()["alreadyConfirmed"] is True
    await dispatcher.drain()


@pytest.mark.asyncio
async def test_confirm_email_errors(client, tokens):
    r = await client.get("/confirm-email", params={"token": "garbage"})
    assert r.status_code == 400
    assert r.json()["errorType"] == "MalformedToken"

    r = await client.get("/confirm-email")
    assert r.status_code == 400

    expired = tokens.issue("old@example.com", now_ms=1_000)
    r = await client.get("/confirm-email", params={"token": expired})
    assert r.status_code == 400
    assert r.json()["errorType"] == "Expired"

    r = await client.get("/confirm-email", params={"token": tokens.issue("ghost@example.com")})
    assert r.status_code == 404
    assert r.json()["errorType"] == "EntryNotFound"


@pytest.mark.asyncio
async def test_resend_confirmation(client, dispatcher, email_service):
    await client.post("/email-waitlist", json={"email": "r@example.com"})
    r = await client.post("/resend-confirmation", json={"email": "r@example.com"})
    await dispatcher.drain()
    assert r.status_code == 200
    assert r.json()["scheduled"] is True
    assert len(email_service.of_kind("confirmation")) == 2

    r = await client.post("/resend-confirmation", json={"email": "ghost@example.com"})
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_stats_and_user_status(client, dispatcher):
    await client.post("/email-waitlist", json={"email": "s1@example.com"})
    await client.post("/email-waitlist", json={"email": "s2@example.com"})
    await dispatcher.drain()

    r = await client.get("/waitlist/stats")
    assert r.status_code == 200
    assert r.json()["totalUsers"] == 2
    assert r.json()["confirmedUsers"] == 0

    r = await client.get("/user-status", params={"email": "S2@example.com"})
    assert r.status_code == 200
    assert r.json()["user"]["position"] == 2
    assert "ipAddress" not in r.json()["user"]
    assert "userAgent" not in r.json()["user"]
    assert r.json()["totalWaitlist"] == 2

    r = await client.get("/user-status", params={"email": "ghost@example.com"})
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_referral_endpoints(client, dispatcher):
    r = await client.post("/email-waitlist", json={"email": "owner@example.com", "name": "Owner"})
    code = r.json()["referralCode"]
    await client.post("/email-waitlist", json={"email": "friend@example.com", "referralCode": code})
    await dispatcher.drain()

    r = await client.get("/referral-leaderboard")
    assert r.status_code == 200
    assert r.json()["leaderboard"][0]["referralCode"] == code
    assert "email" not in r.json()["leaderboard"][0]

    r = await client.get(f"/referral-stats/{code}")
    assert r.status_code == 200
    assert r.json()["referrals"] == 1

    r = await client.get("/referral-stats/hs_nobody")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_health_and_root(client):
    r = await client.get("/")
    assert r.status_code == 200
    assert r.headers["X-Frame-Options"] == "DENY"

    r = await client.get("/health")
    assert r.json()["status"] in ("healthy", "degraded")


@pytest.mark.asyncio
async def test_referral_stats_include_reward_tier(client, dispatcher):
    r = await client.post("/email-waitlist", json={"email": "tier@example.com"})
    code = r.json()["referralCode"]
    await dispatcher.drain()

    r = await client.get(f"/referral-stats/{code}")
    assert r.json()["rewardTier"] == "No referrals yet"


@pytest.mark.asyncio
async def test_send_referral_invite(client, email_service):
    r = await client.post(
        "/send-referral-invite",
        json={
            "toEmail": " Friend@Example.com ",
            "message": "Come try this",
            "senderName": "Ada",
            "referralCode": "hs_abc123",
        },
    )
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert r.headers["X-RateLimit-Remaining"] == "4"

    invite = email_service.of_kind("referral_invite")[0]
    assert invite["to"] == "friend@example.com"
    assert invite["code"] == "hs_abc123"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"toEmail": "not-an-email", "message": "hi"},
        {"toEmail": "friend@example.com", "message": "   "},
        {"toEmail": "friend@example.com"},
    ],
)
async def test_send_referral_invite_rejects_bad_input(client, email_service, payload):
    r = await client.post("/send-referral-invite", json=payload)
    assert r.status_code == 400
    assert r.json()["errorType"] == "InvalidInput"
    assert email_service.of_kind("referral_invite") == []


@pytest.mark.asyncio
async def test_send_referral_invite_without_email_service(client, email_service):
    email_service.enabled = False
    r = await client.post(
        "/send-referral-invite", json={"toEmail": "friend@example.com", "message": "hi"}
    )
    assert r.status_code == 503


@pytest.mark.asyncio
async def test_send_referral_invite_delivery_failure(client, email_service):
    email_service.failures_left = 1
    r = await client.post(
        "/send-referral-invite", json={"toEmail": "friend@example.com", "message": "hi"}
    )
    assert r.status_code == 502
