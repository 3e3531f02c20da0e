"""Tally form webhook adapter.

Turns a raw Tally ``FORM_RESPONSE`` delivery into a ``SignupRequest``.
Which form field feeds which signup attribute is decided by a versioned
``FieldMapping``. The built-in mapping matches fields by type and label;
a JSON file named by ``TALLY_FIELD_MAPPING_PATH`` replaces it when a form's
labels change.

Example mapping file::

    {
      "version": 1,
      "rules": [
        {"target": "email", "field_types": ["INPUT_EMAIL"]},
        {"target": "referral_code", "label_equals": ["invite code"]}
      ]
    }
"""

import base64
import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from healthscan.errors import BadRequest, Unauthorized
from healthscan.logging_config import get_logger
from healthscan.settings import settings
from healthscan.waitlist.models import SignupRequest, SignupSource

logger = get_logger(__name__)

FORM_RESPONSE = "FORM_RESPONSE"
MAPPING_VERSION = 1


# ==================== PAYLOAD ====================


class TallyField(BaseModel):
    """One answered question in a Tally submission."""

    model_config = ConfigDict(extra="allow")

    key: str | None = None
    label: str | None = None
    type: str | None = None
    value: Any = None


class TallyFormData(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    response_id: str | None = None
    submission_id: str | None = None
    respondent_id: str | None = None
    form_id: str | None = None
    form_name: str | None = None
    created_at: datetime | None = None
    fields: list[TallyField] = Field(default_factory=list)


class TallyPayload(BaseModel):
    """Top-level Tally webhook body."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    event_id: str | None = None
    event_type: str
    created_at: datetime | None = None
    data: TallyFormData | None = None


# ==================== FIELD MAPPING ====================


class FieldTarget(str, Enum):
    """Signup attribute a form field can feed."""

    EMAIL = "email"
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    REFERRAL_CODE = "referral_code"
    OPTED_IN_UPDATES = "opted_in_updates"


class FieldRule(BaseModel):
    """Matches form fields by type and label.

    Labels are compared trimmed and case-insensitively. With ``match="any"``
    one satisfied criterion is enough; with ``"all"`` every criterion given
    must hold.
    """

    target: FieldTarget
    field_types: list[str] = Field(default_factory=list)
    label_equals: list[str] = Field(default_factory=list)
    label_contains: list[str] = Field(default_factory=list)
    match: Literal["any", "all"] = "any"

    @model_validator(mode="after")
    def _has_criteria(self) -> "FieldRule":
        if not (self.field_types or self.label_equals or self.label_contains):
            raise ValueError(f"rule for {self.target.value} has no match criteria")
        return self

    def matches(self, field: TallyField) -> bool:
        label = (field.label or "").strip().lower()
        checks = []
        if self.field_types:
            checks.append(field.type in self.field_types)
        if self.label_equals:
            checks.append(label in {text.strip().lower() for text in self.label_equals})
        if self.label_contains:
            checks.append(any(text.lower() in label for text in self.label_contains))
        return all(checks) if self.match == "all" else any(checks)


class FieldMapping(BaseModel):
    """Ordered rules mapping Tally fields onto signup attributes."""

    version: Literal[1] = MAPPING_VERSION
    rules: list[FieldRule]

    @model_validator(mode="after")
    def _requires_email(self) -> "FieldMapping":
        if not any(rule.target == FieldTarget.EMAIL for rule in self.rules):
            raise ValueError("field mapping must contain an email rule")
        return self

    def find(self, target: FieldTarget, fields: list[TallyField]) -> TallyField | None:
        """First field matched by any rule for target."""
        rules = [rule for rule in self.rules if rule.target == target]
        for field in fields:
            if any(rule.matches(field) for rule in rules):
                return field
        return None

    @classmethod
    def from_file(cls, path: Path) -> "FieldMapping":
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


DEFAULT_FIELD_MAPPING = FieldMapping(
    rules=[
        FieldRule(target=FieldTarget.EMAIL, field_types=["INPUT_EMAIL"], label_contains=["email"]),
        FieldRule(target=FieldTarget.FIRST_NAME, label_equals=["first", "first name", "firstname"]),
        FieldRule(target=FieldTarget.LAST_NAME, label_equals=["last", "last name", "lastname"]),
        FieldRule(target=FieldTarget.REFERRAL_CODE, label_contains=["referral", "code"]),
        FieldRule(
            target=FieldTarget.OPTED_IN_UPDATES,
            field_types=["CHECKBOXES"],
            label_contains=["update"],
            match="all",
        ),
    ]
)


def load_field_mapping(path: Path | None = None) -> FieldMapping:
    """Load the mapping file at path, or the built-in mapping."""
    if path is None:
        return DEFAULT_FIELD_MAPPING
    mapping = FieldMapping.from_file(path)
    logger.info("tally_field_mapping_loaded", path=str(path), rules=len(mapping.rules))
    return mapping


# ==================== ADAPTER ====================


@dataclass
class IgnoredEvent:
    """A delivery acknowledged without creating a signup."""

    event_type: str


def sign(raw_body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of raw_body, as Tally sends it."""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def _text(value: Any) -> str | None:
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None or isinstance(value, (dict, bool)):
        return None
    text = str(value).strip()
    return text or None


def _checked(value: Any) -> bool:
    if isinstance(value, list):
        return len(value) > 0
    return value is True


class TallyWebhookAdapter:
    """Verifies and normalizes Tally deliveries."""

    def __init__(
        self,
        signing_secret: str | None = None,
        mapping: FieldMapping | None = None,
        signature_header: str | None = None,
        require_signature: bool | None = None,
    ):
        self.signing_secret = signing_secret
        self.mapping = mapping or DEFAULT_FIELD_MAPPING
        self.signature_header = signature_header or settings.tally_signature_header
        self.require_signature = (
            require_signature if require_signature is not None else settings.tally_require_signature
        )
        if self.require_signature and not self.signing_secret:
            raise ValueError("TALLY_REQUIRE_SIGNATURE is set but TALLY_SIGNING_SECRET is empty")

    @classmethod
    def from_settings(cls) -> "TallyWebhookAdapter":
        return cls(
            signing_secret=settings.tally_signing_secret,
            mapping=load_field_mapping(settings.tally_field_mapping_path),
        )

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        """Raise Unauthorized if the delivery signature does not match."""
        signature = _header(headers, self.signature_header)
        if not signature:
            if self.require_signature:
                logger.warning("tally_signature_missing")
                raise Unauthorized("Missing webhook signature")
            return
        if not self.signing_secret:
            return
        if not hmac.compare_digest(sign(raw_body, self.signing_secret), signature.strip()):
            logger.warning("tally_signature_invalid")
            raise Unauthorized("Invalid webhook signature")

    def parse(self, raw_body: bytes) -> TallyPayload:
        try:
            return TallyPayload.model_validate_json(raw_body)
        except ValidationError as e:
            logger.warning("tally_payload_invalid", errors=e.error_count())
            raise BadRequest("Malformed webhook payload", details=str(e.errors()[0]["msg"])) from e

    def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> SignupRequest | IgnoredEvent:
        """Verify, parse and map one delivery.

        Raises:
            Unauthorized: Signature mismatch (checked before parsing)
            BadRequest: Body is not a Tally payload or has no email
        """
        self.verify(raw_body, headers)
        payload = self.parse(raw_body)

        if payload.event_type != FORM_RESPONSE:
            logger.info("tally_event_ignored", event_type=payload.event_type)
            return IgnoredEvent(event_type=payload.event_type)

        if payload.data is None:
            raise BadRequest("Webhook payload has no form data")
        return self.to_signup(payload)

    def to_signup(self, payload: TallyPayload) -> SignupRequest:
        data = payload.data or TallyFormData()
        fields = data.fields

        def value_for(target: FieldTarget) -> Any:
            field = self.mapping.find(target, fields)
            return field.value if field else None

        email = _text(value_for(FieldTarget.EMAIL))
        if not email:
            raise BadRequest("Email is required", details="no email field in submission")

        first_name = _text(value_for(FieldTarget.FIRST_NAME))
        last_name = _text(value_for(FieldTarget.LAST_NAME))
        full_name = " ".join(part for part in (first_name, last_name) if part)

        provenance = {
            "tallySubmissionId": data.submission_id,
            "tallyRespondentId": data.respondent_id,
            "tallyResponseId": data.response_id,
            "tallyFormId": data.form_id,
            "tallyEventId": payload.event_id,
        }

        return SignupRequest(
            email=email.lower(),
            name=full_name or None,
            first_name=first_name,
            last_name=last_name,
            referral_code=_text(value_for(FieldTarget.REFERRAL_CODE)),
            opted_in_updates=_checked(value_for(FieldTarget.OPTED_IN_UPDATES)),
            source=SignupSource.WEBHOOK,
            signup_date=data.created_at,
            provenance={key: value for key, value in provenance.items() if value},
        )
