"""Shared service instances and FastAPI dependency providers.

Routers depend on the ``get_*`` providers rather than the module globals so
that tests can swap collaborators through ``app.dependency_overrides``.
"""

from fastapi import Depends, Request, Response

from healthscan.api.rate_limit import (
    RateLimitDecision,
    SignupRateLimiter,
    client_ip,
    signup_limiter,
)
from healthscan.confirmation.tokens import ConfirmationTokenManager
from healthscan.email.service import EmailService
from healthscan.errors import RateLimited
from healthscan.notifications.dispatcher import BackgroundDispatcher
from healthscan.notifications.slack import SlackNotifier
from healthscan.storage.db import db
from healthscan.storage.kv import KVStore
from healthscan.waitlist.service import WaitlistService
from healthscan.webhooks.tally import TallyWebhookAdapter

kv_store = KVStore(db)
token_manager = ConfirmationTokenManager(kv=kv_store)
email_service = EmailService(token_manager)
slack_notifier = SlackNotifier()
dispatcher = BackgroundDispatcher()
waitlist_service = WaitlistService(
    kv=kv_store,
    tokens=token_manager,
    email_service=email_service,
    notifier=slack_notifier,
    dispatcher=dispatcher,
)
# Loads and validates the field mapping at import time
tally_adapter = TallyWebhookAdapter.from_settings()


def get_waitlist_service() -> WaitlistService:
    return waitlist_service


def get_email_service() -> EmailService:
    return email_service


def get_tally_adapter() -> TallyWebhookAdapter:
    return tally_adapter


def get_signup_limiter() -> SignupRateLimiter:
    return signup_limiter


def enforce_signup_rate_limit(
    request: Request,
    response: Response,
    limiter: SignupRateLimiter = Depends(get_signup_limiter),
) -> RateLimitDecision:
    """Count the request against its IP's signup quota.

    Raises:
        RateLimited: Quota for the current window is used up
    """
    decision = limiter.check(client_ip(request))
    if not decision.allowed:
        raise RateLimited(decision.retry_after_seconds, decision.remaining)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    return decision
