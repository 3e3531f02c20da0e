"""Webhook endpoints for external form services."""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from healthscan.api.deps import get_tally_adapter, get_waitlist_service
from healthscan.api.rate_limit import client_ip
from healthscan.logging_config import get_logger
from healthscan.waitlist.service import WaitlistService
from healthscan.webhooks.tally import IgnoredEvent, TallyWebhookAdapter

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/tally")
async def tally_webhook(
    request: Request,
    adapter: TallyWebhookAdapter = Depends(get_tally_adapter),
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Handle a Tally form submission.

    The signature is checked against the raw body before it is parsed.
    Redelivered submissions are absorbed by signup deduplication and
    answered with 200.
    """
    raw_body = await request.body()
    outcome = adapter.handle(raw_body, request.headers)

    if isinstance(outcome, IgnoredEvent):
        return {
            "success": True,
            "message": "Event type ignored",
            "eventType": outcome.event_type,
        }

    signup = outcome.model_copy(
        update={
            "ip_address": client_ip(request),
            "user_agent": request.headers.get("user-agent"),
        }
    )
    result = await service.ingest(signup)

    logger.info(
        "tally_submission_processed",
        email=result.entry.email,
        position=result.position,
        already_exists=result.already_exists,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if result.already_exists else status.HTTP_201_CREATED,
        content={
            "success": True,
            "message": "Already on waitlist" if result.already_exists else "Added to waitlist",
            "position": result.position,
            "referralCode": result.referral_code,
            "alreadyExists": result.already_exists,
            "totalWaitlist": result.total_waitlist,
        },
    )
