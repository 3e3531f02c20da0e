import os

# Must be set before healthscan.settings is imported
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
for name in ("RESEND_API_KEY", "SLACK_WEBHOOK_URL", "TALLY_SIGNING_SECRET", "TALLY_FIELD_MAPPING_PATH"):
    os.environ.pop(name, None)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from healthscan.api import deps
from healthscan.api.main import app
from healthscan.api.rate_limit import SignupRateLimiter
from healthscan.confirmation.tokens import ConfirmationTokenManager
from healthscan.notifications.dispatcher import BackgroundDispatcher
from healthscan.settings import settings
from healthscan.storage.db import Database
from healthscan.storage.kv import KVStore
from healthscan.waitlist.service import WaitlistService
from healthscan.webhooks.tally import TallyWebhookAdapter

ADMIN_KEY = "test-admin-key"
TOKEN_SECRET = "test-secret-key-for-confirmation-tokens"
TALLY_SECRET = "tally-test-signing-secret"


class FakeEmailService:
    """Records sends instead of calling Resend."""

    def __init__(self, tokens, enabled=True):
        self.tokens = tokens
        self.enabled = enabled
        self.sent = []
        self.failures_left = 0

    def _attempt(self):
        if self.failures_left > 0:
            self.failures_left -= 1
            return False
        return True

    async def send_waitlist_confirmation(self, to_email, name, position, referral_code):
        if not self._attempt():
            return False
        token = self.tokens.issue(to_email)
        self.tokens.remember(token, to_email, position)
        self.sent.append({"kind": "confirmation", "to": to_email, "token": token})
        return True

    async def send_email_confirmed(self, to_email, name, position):
        self.sent.append({"kind": "confirmed", "to": to_email})
        return self._attempt()

    async def send_welcome_email(self, to_email, name, position, referral_code):
        self.sent.append({"kind": "welcome", "to": to_email, "code": referral_code})
        return self._attempt()

    async def send_how_to_use_email(self, to_email, name):
        self.sent.append({"kind": "how_to_use", "to": to_email})
        return self._attempt()

    async def send_referral_invite(
        self, to_email, message, sender_name=None, sender_email=None, referral_code=None
    ):
        self.sent.append(
            {"kind": "referral_invite", "to": to_email, "message": message, "code": referral_code}
        )
        return self._attempt()

    def of_kind(self, kind):
        return [message for message in self.sent if message["kind"] == kind]


class FakeNotifier:
    def __init__(self, enabled=True):
        self.enabled = enabled
        self.events = []

    async def notify_signup(self, event):
        self.events.append(event)
        return True


@pytest.fixture
def database():
    database = Database("sqlite://")
    database.create_tables()
    yield database
    database.drop_tables()
    database.engine.dispose()


@pytest.fixture
def kv(database):
    return KVStore(database)


@pytest.fixture
def tokens(kv):
    return ConfirmationTokenManager(secret_key=TOKEN_SECRET, ttl_hours=24, kv=kv)


@pytest.fixture
def email_service(tokens):
    return FakeEmailService(tokens)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def dispatcher():
    return BackgroundDispatcher(max_attempts=3, backoff_min=0, backoff_max=0)


@pytest.fixture
def service(kv, tokens, email_service, notifier, dispatcher):
    return WaitlistService(
        kv=kv,
        tokens=tokens,
        email_service=email_service,
        notifier=notifier,
        dispatcher=dispatcher,
    )


@pytest.fixture
def rate_limiter():
    return SignupRateLimiter(limit=5, window_seconds=3600, sweep_probability=0)


@pytest.fixture
def tally_adapter():
    return TallyWebhookAdapter(signing_secret=TALLY_SECRET, require_signature=False)


@pytest_asyncio.fixture
async def client(service, rate_limiter, tally_adapter, email_service):
    app.dependency_overrides[deps.get_waitlist_service] = lambda: service
    app.dependency_overrides[deps.get_signup_limiter] = lambda: rate_limiter
    app.dependency_overrides[deps.get_tally_adapter] = lambda: tally_adapter
    app.dependency_overrides[deps.get_email_service] = lambda: email_service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_KEY}"}


@pytest.fixture
def trusted_proxy(monkeypatch):
    """Treat the test client's peer address as a reverse proxy."""
    monkeypatch.setattr(settings, "trusted_proxies", "127.0.0.1")
