"""Waitlist data model.

Entries are stored as camelCase JSON documents under
``waitlist_user_{email}``; the web frontend reads the same documents.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from healthscan.errors import InvalidInput

USER_PREFIX = "waitlist_user_"
COUNT_KEY = "waitlist_count"

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def user_key(email: str) -> str:
    return f"{USER_PREFIX}{email}"


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def normalize_email(raw: Any) -> str:
    """Trim and lowercase raw, raising InvalidInput if it is not an address."""
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidInput("Email is required")
    email = raw.strip().lower()
    if not is_valid_email(email):
        raise InvalidInput("Invalid email format", details=email)
    return email


class SignupSource(str, Enum):
    """Channel a signup arrived through."""

    DIRECT = "direct"
    WEBHOOK = "webhook"


class WaitlistEntry(BaseModel):
    """One signup, keyed by normalized email."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    position: int = Field(gt=0)
    referral_code: str
    referred_by: str | None = None
    source: SignupSource = SignupSource.DIRECT

    confirmed: bool = False
    email_confirmed_at: datetime | None = None
    signup_date: datetime = Field(default_factory=utcnow)
    emails_sent: int = 0
    last_email_sent: datetime | None = None
    opted_in_updates: bool = False

    referrals: int = 0
    last_referral_date: datetime | None = None

    # Request context
    ip_address: str | None = None
    user_agent: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None

    # Channel metadata such as tallySubmissionId
    provenance: dict[str, Any] = Field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "WaitlistEntry":
        return cls.model_validate(record)


class SignupRequest(BaseModel):
    """Normalized signup shape produced by every ingestion channel."""

    email: str
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    referral_code: str | None = None
    source: SignupSource = SignupSource.DIRECT
    opted_in_updates: bool = False
    signup_date: datetime | None = None

    ip_address: str | None = None
    user_agent: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None

    provenance: dict[str, Any] = Field(default_factory=dict)


@dataclass
class IngestResult:
    """Outcome of ingesting one signup."""

    position: int
    referral_code: str
    already_exists: bool
    entry: WaitlistEntry
    total_waitlist: int

