"""Waitlist email sending via the Resend API."""

from html import escape
from typing import Optional
from urllib.parse import quote

import httpx

from healthscan.confirmation.tokens import ConfirmationTokenManager
from healthscan.logging_config import get_logger
from healthscan.settings import settings

logger = get_logger(__name__)


def _layout(heading: str, body_html: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head><meta charset="utf-8"></head>
    <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333;">
        <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
            <h1 style="color: #16a34a; font-size: 22px;">{heading}</h1>
            {body_html}
            <p style="margin-top: 40px; font-size: 12px; color: #666;">HealthScan · {settings.public_base_url}</p>
        </div>
    </body>
    </html>
    """


def _greeting(name: Optional[str]) -> str:
    return f"Hi {name}," if name else "Hi there,"


class EmailService:
    """Email service using the Resend API.

    Handles the waitlist sequence:
    - Confirmation request (carries the confirmation link)
    - Email confirmed
    - Welcome with referral link
    - How to use HealthScan
    - Member-to-friend referral invites
    """

    RESEND_API_URL = "https://api.resend.com/emails"

    def __init__(
        self,
        tokens: ConfirmationTokenManager,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
    ):
        """Initialize email service."""
        self.tokens = tokens
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.from_email = from_email or settings.email_from
        self.enabled = bool(self.api_key)

        if not self.enabled:
            logger.warning("email_service_disabled", reason="RESEND_API_KEY not set")

    async def _send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> bool:
        """Send an email via Resend.

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.enabled:
            logger.warning("email_not_sent", reason="service_disabled", to=to_email)
            return False

        payload = {
            "from": self.from_email,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }
        if text_content:
            payload["text"] = text_content

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.RESEND_API_URL,
                    json=payload,
                    headers=headers,
                    timeout=30.0,
                )
        except httpx.RequestError as e:
            logger.error("email_send_error", to=to_email, error=str(e))
            return False

        if response.status_code in (200, 201, 202):
            logger.info("email_sent", to=to_email, subject=subject)
            return True

        logger.error(
            "email_send_failed",
            to=to_email,
            status=response.status_code,
            body=response.text[:200],
        )
        return False

    def confirmation_url(self, token: str) -> str:
        return f"{settings.public_base_url}/confirm-email?token={token}"

    def referral_url(self, referral_code: str) -> str:
        return f"{settings.public_base_url}/?ref={referral_code}"

    async def send_waitlist_confirmation(
        self,
        to_email: str,
        name: Optional[str],
        position: int,
        referral_code: str,
    ) -> bool:
        """Mint a confirmation token and email the link.

        The token's bookkeeping record is stored only once the email is
        accepted by Resend.
        """
        token = self.tokens.issue(to_email)
        url = self.confirmation_url(token)
        hours = settings.confirmation_token_ttl_hours

        html_content = _layout(
            "Confirm your spot on the HealthScan waitlist",
            f"""
            <p>{escape(_greeting(name))}</p>
            <p>You're <strong>#{position}</strong> in line. Please confirm your email to keep your spot.</p>
            <p><a href="{url}">Confirm my email</a></p>
            <p>This link is valid for {hours} hours.</p>
            <p>Share your referral link to move up: {self.referral_url(referral_code)}</p>
            """,
        )
        text_content = (
            f"{_greeting(name)}\n\n"
            f"You're #{position} in line. Confirm your email to keep your spot:\n{url}\n\n"
            f"This link is valid for {hours} hours.\n\n"
            f"Your referral link: {self.referral_url(referral_code)}\n"
        )

        sent = await self._send_email(
            to_email,
            "🎉 Welcome to HealthScan - Confirm Your Spot!",
            html_content,
            text_content,
        )
        if sent:
            self.tokens.remember(token, to_email, position)
        return sent

    async def send_email_confirmed(self, to_email: str, name: Optional[str], position: int) -> bool:
        html_content = _layout(
            "Your email is confirmed",
            f"<p>{escape(_greeting(name))}</p>"
            f"<p>Thanks for confirming. Your spot <strong>#{position}</strong> is secured.</p>",
        )
        text_content = (
            f"{_greeting(name)}\n\nThanks for confirming. Your spot #{position} is secured.\n"
        )
        return await self._send_email(
            to_email, f"✅ Email confirmed - you're #{position}", html_content, text_content
        )

    async def send_welcome_email(
        self,
        to_email: str,
        name: Optional[str],
        position: int,
        referral_code: str,
    ) -> bool:
        link = self.referral_url(referral_code)
        html_content = _layout(
            "Welcome to HealthScan",
            f"<p>{escape(_greeting(name))}</p>"
            f"<p>You're <strong>#{position}</strong> in queue.</p>"
            f"<p>Invite friends with your code <strong>{escape(referral_code)}</strong>: "
            f'<a href="{link}">{link}</a></p>',
        )
        text_content = (
            f"{_greeting(name)}\n\nYou're #{position} in queue.\n"
            f"Invite friends with your code {referral_code}: {link}\n"
        )
        return await self._send_email(
            to_email,
            f"Welcome to HealthScan! You're #{position} in queue",
            html_content,
            text_content,
        )

    async def send_how_to_use_email(self, to_email: str, name: Optional[str]) -> bool:
        html_content = _layout(
            "How to use HealthScan",
            f"<p>{escape(_greeting(name))}</p>"
            "<p>Scan a product barcode, review its ingredients and compare alternatives. "
            "We'll let you know as soon as your access is ready.</p>",
        )
        text_content = (
            f"{_greeting(name)}\n\n"
            "Scan a product barcode, review its ingredients and compare alternatives.\n"
            "We'll let you know as soon as your access is ready.\n"
        )
        return await self._send_email(
            to_email, "How to get the most out of HealthScan", html_content, text_content
        )

    async def send_referral_invite(
        self,
        to_email: str,
        message: str,
        sender_name: Optional[str] = None,
        sender_email: Optional[str] = None,
        referral_code: Optional[str] = None,
    ) -> bool:
        """Send a member's personal invite, linking to their referral code."""
        from_name = sender_name or "A HealthScan member"
        link = self.referral_url(quote(referral_code)) if referral_code else settings.public_base_url
        invited_by = escape(from_name)
        if sender_email:
            invited_by += f" ({escape(sender_email)})"

        html_content = _layout(
            f"{escape(from_name)} invited you to HealthScan",
            f'<p style="font-size: 13px; color: #666;">Invited by <strong>{invited_by}</strong></p>'
            f'<div style="white-space: pre-wrap;">{escape(message)}</div>'
            f'<p><a href="{link}">Join HealthScan</a></p>'
            f'<p style="font-size: 12px; color: #999;">This email was sent on behalf of {escape(from_name)} '
            "via HealthScan. If you didn't expect it, you can safely ignore it.</p>",
        )
        text_content = f"{from_name} invited you to HealthScan!\n\n{message}\n\nJoin here: {link}\n"

        sent = await self._send_email(
            to_email,
            f"{from_name} invited you to try HealthScan 🌱",
            html_content,
            text_content,
        )
        if sent:
            logger.info("referral_invite_sent", to=to_email, referral_code=referral_code)
        return sent
