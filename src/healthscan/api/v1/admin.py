"""Operator endpoints for managing the waitlist.

All routes require the admin API key as a Bearer token.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from healthscan.api.deps import get_email_service, get_waitlist_service
from healthscan.api.rate_limit import ADMIN_RATE_LIMIT, limiter
from healthscan.auth.middleware import require_admin
from healthscan.email.service import EmailService
from healthscan.logging_config import get_logger
from healthscan.waitlist.models import normalize_email
from healthscan.waitlist.service import WaitlistService

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# ==================== MODELS ====================


class SendTestEmailsRequest(BaseModel):
    """Recipient details for the test email sequence."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str
    name: str | None = None
    position: int = Field(default=1, gt=0)
    referral_code: str | None = None


class EmailRequest(BaseModel):
    email: str


class UpdateEntryRequest(BaseModel):
    email: str
    updates: dict[str, Any]


class BulkUpdateRequest(BaseModel):
    items: list[UpdateEntryRequest]


class BulkDeleteRequest(BaseModel):
    emails: list[str]


def _require_email_service(email_service: EmailService) -> None:
    if not email_service.enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Email service not configured",
        )


# ==================== EMAILS ====================


@router.post("/send-test-emails")
@limiter.limit(ADMIN_RATE_LIMIT)
async def send_test_emails(
    request: Request,
    body: SendTestEmailsRequest,
    email_service: EmailService = Depends(get_email_service),
):
    """Send the confirmation, welcome and how-to-use emails to one address.

    The welcome email is only sent when a referral code is given.
    """
    _require_email_service(email_service)
    email = normalize_email(body.email)

    results: dict[str, bool | None] = {
        "confirmation": await email_service.send_waitlist_confirmation(
            email, body.name, body.position, body.referral_code or ""
        ),
        "welcome": None,
        "howToUse": None,
    }
    if body.referral_code:
        results["welcome"] = await email_service.send_welcome_email(
            email, body.name, body.position, body.referral_code
        )
    results["howToUse"] = await email_service.send_how_to_use_email(email, body.name)

    logger.info("admin_test_emails_sent", email=email, results=results)
    return {
        "success": all(sent is not False for sent in results.values()),
        "results": results,
    }


@router.post("/resend-welcome-email")
@limiter.limit(ADMIN_RATE_LIMIT)
async def resend_welcome_email(
    request: Request,
    body: EmailRequest,
    service: WaitlistService = Depends(get_waitlist_service),
    email_service: EmailService = Depends(get_email_service),
):
    """Send the welcome email again for an existing entry."""
    _require_email_service(email_service)
    entry = service.get_entry(body.email)

    sent = await email_service.send_welcome_email(
        entry.email, entry.name, entry.position, entry.referral_code
    )
    if sent:
        service.record_email_sent(entry.email)
    return {"success": sent, "email": entry.email, "position": entry.position}


# ==================== WAITLIST ====================


@router.get("/waitlist")
@limiter.limit(ADMIN_RATE_LIMIT)
async def list_waitlist(request: Request, service: WaitlistService = Depends(get_waitlist_service)):
    """All entries ordered by position."""
    entries = service.list_entries()
    return {
        "success": True,
        "total": len(entries),
        "entries": [entry.to_record() for entry in entries],
    }


@router.post("/waitlist/update")
@limiter.limit(ADMIN_RATE_LIMIT)
async def update_entry(
    request: Request,
    body: UpdateEntryRequest,
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Edit one entry. ``email``, ``position`` and ``referralCode`` cannot change."""
    entry = service.update_entry(body.email, body.updates)
    return {"success": True, "entry": entry.to_record()}


@router.post("/waitlist/delete")
@limiter.limit(ADMIN_RATE_LIMIT)
async def delete_entry(
    request: Request,
    body: EmailRequest,
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Remove one entry. Remaining positions are not renumbered."""
    entry = service.delete_entry(body.email)
    return {"success": True, "email": entry.email, "position": entry.position}


@router.post("/waitlist/bulk-update")
@limiter.limit(ADMIN_RATE_LIMIT)
async def bulk_update(
    request: Request,
    body: BulkUpdateRequest,
    service: WaitlistService = Depends(get_waitlist_service),
):
    outcome = service.bulk_update([item.model_dump() for item in body.items])
    return {"success": not outcome["failed"], **outcome}


@router.post("/waitlist/bulk-delete")
@limiter.limit(ADMIN_RATE_LIMIT)
async def bulk_delete(
    request: Request,
    body: BulkDeleteRequest,
    service: WaitlistService = Depends(get_waitlist_service),
):
    outcome = service.bulk_delete(body.emails)
    return {"success": not outcome["failed"], **outcome}
