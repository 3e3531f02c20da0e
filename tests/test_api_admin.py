import pytest

from healthscan.settings import settings


async def signup(client, email, **extra):
    r = await client.post("/email-waitlist", json={"email": email, **extra})
    assert r.status_code == 200
    return r.json()


@pytest.mark.asyncio
async def test_requires_admin_key(client):
    r = await client.get("/admin/waitlist")
    assert r.status_code == 401

    r = await client.get("/admin/waitlist", headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401
    assert r.json()["errorType"] == "Unauthorized"


@pytest.mark.asyncio
async def test_admin_disabled_without_key(client, admin_headers, monkeypatch):
    monkeypatch.setattr(settings, "admin_api_key", None)
    r = await client.get("/admin/waitlist", headers=admin_headers)
    assert r.status_code == 503


@pytest.mark.asyncio
async def test_list_update_delete(client, admin_headers, dispatcher):
    await signup(client, "a@example.com")
    await signup(client, "b@example.com")
    await signup(client, "c@example.com")
    await dispatcher.drain()

    r = await client.get("/admin/waitlist", headers=admin_headers)
    assert r.status_code == 200
    assert [e["position"] for e in r.json()["entries"]] == [1, 2, 3]

    r = await client.post(
        "/admin/waitlist/update",
        json={"email": "a@example.com", "updates": {"name": "Alice", "position": 50}},
        headers=admin_headers,
    )
    assert r.status_code == 200
    assert r.json()["entry"]["name"] == "Alice"
    assert r.json()["entry"]["position"] == 1

    r = await client.post(
        "/admin/waitlist/delete", json={"email": "b@example.com"}, headers=admin_headers
    )
    assert r.status_code == 200

    r = await client.post(
        "/admin/waitlist/delete", json={"email": "b@example.com"}, headers=admin_headers
    )
    assert r.status_code == 404

    body = await signup(client, "d@example.com")
    assert body["position"] == 4
    await dispatcher.drain()


@pytest.mark.asyncio
async def test_bulk_operations(client, admin_headers, dispatcher):
    await signup(client, "a@example.com")
    await signup(client, "b@example.com")
    await dispatcher.drain()

    r = await client.post(
        "/admin/waitlist/bulk-update",
        json={
            "items": [
                {"email": "a@example.com", "updates": {"confirmed": True}},
                {"email": "b@example.com", "updates": {"confirmed": True}},
            ]
        },
        headers=admin_headers,
    )
    assert r.json() == {"success": True, "updated": 2, "failed": []}

    r = await client.post(
        "/admin/waitlist/bulk-delete",
        json={"emails": ["a@example.com", "ghost@example.com"]},
        headers=admin_headers,
    )
    body = r.json()
    assert body["deleted"] == 1
    assert body["success"] is False
    assert body["failed"][0]["email"] == "ghost@example.com"


@pytest.mark.asyncio
async def test_send_test_emails(client, admin_headers, email_service):
    r = await client.post(
        "/admin/send-test-emails",
        json={"email": "qa@example.com", "position": 12, "referralCode": "hs_qa0000"},
        headers=admin_headers,
    )
    assert r.status_code == 200
    assert r.json()["results"] == {"confirmation": True, "welcome": True, "howToUse": True}
    assert [m["kind"] for m in email_service.sent] == ["confirmation", "welcome", "how_to_use"]


@pytest.mark.asyncio
async def test_send_test_emails_without_referral_code(client, admin_headers, email_service):
    r = await client.post(
        "/admin/send-test-emails", json={"email": "qa@example.com"}, headers=admin_headers
    )
    assert r.json()["results"]["welcome"] is None
    assert [m["kind"] for m in email_service.sent] == ["confirmation", "how_to_use"]


@pytest.mark.asyncio
async def test_send_test_emails_needs_email_service(client, admin_headers, email_service):
    email_service.enabled = False
    r = await client.post(
        "/admin/send-test-emails", json={"email": "qa@example.com"}, headers=admin_headers
    )
    assert r.status_code == 503


@pytest.mark.asyncio
async def test_resend_welcome_email(client, admin_headers, dispatcher, email_service, service):
    await signup(client, "w@example.com")
    await dispatcher.drain()

    r = await client.post(
        "/admin/resend-welcome-email", json={"email": "w@example.com"}, headers=admin_headers
    )
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert email_service.of_kind("welcome")[0]["code"] == service.get_entry("w@example.com").referral_code
    assert service.get_entry("w@example.com").emails_sent == 2
