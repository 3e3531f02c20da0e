"""Referral endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from healthscan.api.deps import (
    enforce_signup_rate_limit,
    get_email_service,
    get_waitlist_service,
)
from healthscan.email.service import EmailService
from healthscan.errors import InvalidInput
from healthscan.waitlist.models import normalize_email
from healthscan.waitlist.service import WaitlistService

router = APIRouter(tags=["referral"])


# ==================== MODELS ====================


class ReferralInviteBody(BaseModel):
    """A member's invite to a friend."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    to_email: str
    message: str
    sender_name: str | None = None
    sender_email: str | None = None
    referral_code: str | None = None


# ==================== ENDPOINTS ====================


@router.get("/referral-leaderboard")
async def referral_leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Top referrers by number of referred signups."""
    return {"success": True, "leaderboard": service.referral_leaderboard(limit=limit)}


@router.get("/referral-stats/{code}")
async def referral_stats(code: str, service: WaitlistService = Depends(get_waitlist_service)):
    """Referral activity and reward tier for one referral code."""
    return {"success": True, **service.referral_stats(code.strip())}


@router.post("/send-referral-invite", dependencies=[Depends(enforce_signup_rate_limit)])
async def send_referral_invite(
    body: ReferralInviteBody,
    email_service: EmailService = Depends(get_email_service),
):
    """Email a friend an invite carrying the sender's referral link."""
    recipient = normalize_email(body.to_email)
    message = body.message.strip()
    if not message:
        raise InvalidInput("Invite message is required")

    if not email_service.enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Email service not configured",
        )

    sent = await email_service.send_referral_invite(
        recipient,
        message,
        sender_name=(body.sender_name or "").strip() or None,
        sender_email=(body.sender_email or "").strip() or None,
        referral_code=(body.referral_code or "").strip() or None,
    )
    if not sent:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Invite email could not be sent",
        )
    return {"success": True, "message": "Invite sent!"}
