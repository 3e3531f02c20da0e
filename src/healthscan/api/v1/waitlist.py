"""Public waitlist endpoints."""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from healthscan.api.deps import enforce_signup_rate_limit, get_waitlist_service
from healthscan.api.rate_limit import client_ip
from healthscan.confirmation.tokens import TokenErrorKind
from healthscan.logging_config import get_logger
from healthscan.waitlist.models import SignupRequest, SignupSource
from healthscan.waitlist.service import WaitlistService

logger = get_logger(__name__)

router = APIRouter(tags=["waitlist"])

TOKEN_ERROR_MESSAGES = {
    TokenErrorKind.EXPIRED: "Confirmation link has expired. Please request a new one.",
    TokenErrorKind.MALFORMED_TOKEN: "Invalid confirmation link.",
    TokenErrorKind.MALFORMED_EMAIL: "Invalid email in confirmation link.",
}


# ==================== MODELS ====================


class SignupBody(BaseModel):
    """Direct signup form submission."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    referral_code: str | None = None
    opted_in_updates: bool = False
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None


class ResendConfirmationBody(BaseModel):
    email: str


# ==================== ENDPOINTS ====================


@router.post("/email-waitlist", dependencies=[Depends(enforce_signup_rate_limit)])
async def join_waitlist(
    body: SignupBody,
    request: Request,
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Add an email to the waitlist.

    Repeat signups return the stored position with ``alreadyExists``.
    """
    result = await service.ingest(
        SignupRequest(
            email=body.email,
            name=body.name,
            first_name=body.first_name,
            last_name=body.last_name,
            referral_code=body.referral_code,
            opted_in_updates=body.opted_in_updates,
            source=SignupSource.DIRECT,
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            utm_source=body.utm_source,
            utm_medium=body.utm_medium,
            utm_campaign=body.utm_campaign,
        )
    )
    return {
        "success": True,
        "message": "Already on waitlist" if result.already_exists else "Added to waitlist",
        "position": result.position,
        "referralCode": result.referral_code,
        "alreadyExists": result.already_exists,
        "totalWaitlist": result.total_waitlist,
    }


@router.get("/confirm-email")
async def confirm_email(
    token: str = Query(default=""),
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Confirm the email address carried by a confirmation link."""
    result = await service.confirm_email(token)
    if not result.ok:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": TOKEN_ERROR_MESSAGES[result.error],
                "errorType": result.error.value,
            },
        )

    return {
        "success": True,
        "message": "Email already confirmed" if result.already_confirmed else "Email confirmed",
        "email": result.email,
        "position": result.position,
        "alreadyConfirmed": result.already_confirmed,
    }


@router.post("/resend-confirmation", dependencies=[Depends(enforce_signup_rate_limit)])
async def resend_confirmation(
    body: ResendConfirmationBody,
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Send a fresh confirmation link."""
    outcome = await service.resend_confirmation(body.email)
    if outcome["alreadyConfirmed"]:
        message = "Email already confirmed"
    elif outcome["scheduled"]:
        message = "Confirmation email sent"
    else:
        message = "Email delivery is currently unavailable"
    return {"success": True, "message": message, **outcome}


@router.get("/waitlist/stats")
async def waitlist_stats(service: WaitlistService = Depends(get_waitlist_service)):
    """Aggregate signup numbers."""
    return {"success": True, **service.stats()}


@router.get("/user-status")
async def user_status(
    email: str = Query(...),
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Look up one signup by email."""
    return {"success": True, **service.user_status(email)}
