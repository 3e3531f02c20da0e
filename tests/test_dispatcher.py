import asyncio

import httpx
import pytest

from healthscan.notifications.dispatcher import BackgroundDispatcher
from healthscan.notifications.slack import SignupEvent, SlackNotifier, is_public_ip


@pytest.mark.asyncio
async def test_job_retried_until_success():
    dispatcher = BackgroundDispatcher(max_attempts=3, backoff_min=0, backoff_max=0)
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("temporary")

    dispatcher.submit("flaky", flaky)
    await dispatcher.drain()
    assert len(calls) == 3
    assert dispatcher.failed == 0


@pytest.mark.asyncio
async def test_job_gives_up_after_max_attempts():
    dispatcher = BackgroundDispatcher(max_attempts=2, backoff_min=0, backoff_max=0)
    calls = []

    async def broken():
        calls.append(1)
        raise RuntimeError("permanent")

    task = dispatcher.submit("broken", broken)
    await dispatcher.drain()
    assert len(calls) == 2
    assert dispatcher.failed == 1
    assert task.exception() is None
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_drain_waits_for_jobs_submitted_by_jobs():
    dispatcher = BackgroundDispatcher(max_attempts=1, backoff_min=0, backoff_max=0)
    done = []

    async def child():
        await asyncio.sleep(0)
        done.append("child")

    async def parent():
        dispatcher.submit("child", child)
        done.append("parent")

    dispatcher.submit("parent", parent)
    await dispatcher.drain()
    assert done == ["parent", "child"]


def test_public_ip_detection():
    assert is_public_ip("8.8.8.8")
    assert not is_public_ip("10.1.2.3")
    assert not is_public_ip("127.0.0.1")
    assert not is_public_ip("unknown")
    assert not is_public_ip(None)


def make_event(**overrides):
    values = dict(
        email="ada@example.com",
        position=7,
        referral_code="hs_abc123",
        source="direct",
        total_waitlist=7,
        ip_address="10.0.0.1",
    )
    values.update(overrides)
    return SignupEvent(**values)


@pytest.mark.asyncio
async def test_notifier_disabled_without_webhook():
    notifier = SlackNotifier(webhook_url="")
    assert notifier.enabled is False
    assert await notifier.notify_signup(make_event()) is False


def test_message_contains_signup_details():
    notifier = SlackNotifier(webhook_url="https://hooks.slack.test/x")
    message = notifier.build_message(make_event(), "Berlin, Germany")
    text = str(message["blocks"])
    assert "ada@example.com" in text
    assert "#7" in text
    assert "Berlin, Germany" in text


@pytest.mark.asyncio
async def test_notifier_reports_transport_errors(monkeypatch):
    class FailingClient:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

        async def post(self, *args, **kwargs):
            raise httpx.ConnectTimeout("timed out")

    monkeypatch.setattr(httpx, "AsyncClient", FailingClient)
    notifier = SlackNotifier(webhook_url="https://hooks.slack.test/x")
    assert await notifier.notify_signup(make_event()) is False
