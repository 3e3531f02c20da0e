"""Slack alerts for new waitlist signups."""

import ipaddress
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from healthscan.logging_config import get_logger
from healthscan.settings import settings

logger = get_logger(__name__)


@dataclass
class SignupEvent:
    """A signup that just happened, as the notifier sees it."""

    email: str
    position: int
    referral_code: str
    source: str
    total_waitlist: int
    name: str | None = None
    referred_by: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    signup_date: datetime | None = None


def is_public_ip(ip: str | None) -> bool:
    if not ip:
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_unspecified
    )


class SlackNotifier:
    """Posts signup alerts to a Slack incoming webhook."""

    def __init__(self, webhook_url: str | None = None, timeout: float | None = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.slack_webhook_url
        self.timeout = timeout if timeout is not None else settings.geo_lookup_timeout_seconds
        self.enabled = bool(self.webhook_url)

        if not self.enabled:
            logger.warning("slack_notifier_disabled", reason="SLACK_WEBHOOK_URL not set")

    async def lookup_location(self, ip: str | None) -> str | None:
        """Resolve ip to "City, Region, Country". Returns None on any failure."""
        if not is_public_ip(ip):
            return None
        url = settings.geo_lookup_url.format(ip=ip)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
            if response.status_code != 200:
                return None
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.info("geo_lookup_failed", ip=ip, error=str(e))
            return None

        parts = [data.get("city"), data.get("regionName"), data.get("country")]
        location = ", ".join(part for part in parts if part)
        return location or None

    def build_message(self, event: SignupEvent, location: str | None) -> dict[str, Any]:
        fields = [
            f"*Email:*\n{event.email}",
            f"*Position:*\n#{event.position}",
            f"*Name:*\n{event.name or '-'}",
            f"*Source:*\n{event.source}",
            f"*Referral code:*\n{event.referral_code}",
            f"*Referred by:*\n{event.referred_by or '-'}",
            f"*Location:*\n{location or 'Unknown'}",
            f"*Total waitlist:*\n{event.total_waitlist}",
        ]
        when = (event.signup_date or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M UTC")
        return {
            "text": f"New waitlist signup: {event.email} (#{event.position})",
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": "🎉 New waitlist signup"},
                },
                {
                    "type": "section",
                    "fields": [{"type": "mrkdwn", "text": text} for text in fields],
                },
                {
                    "type": "context",
                    "elements": [
                        {
                            "type": "mrkdwn",
                            "text": f"{when} · {event.user_agent or 'unknown client'}",
                        }
                    ],
                },
            ],
        }

    async def notify_signup(self, event: SignupEvent) -> bool:
        """Post event to Slack.

        Returns:
            True if Slack accepted the message. Never raises.
        """
        if not self.enabled:
            return False

        location = await self.lookup_location(event.ip_address)
        message = self.build_message(event, location)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=message)
        except httpx.HTTPError as e:
            logger.error("slack_notification_error", email=event.email, error=str(e))
            return False

        if response.status_code != 200:
            logger.error(
                "slack_notification_failed",
                email=event.email,
                status=response.status_code,
                body=response.text[:200],
            )
            return False

        logger.info("slack_notification_sent", email=event.email, position=event.position)
        return True
