"""Email confirmation tokens.

A token binds ``(email, issued-at millis, nonce)`` in an HS256 JWT, so
editing any field invalidates the signature. Validation is stateless:
signature, age and email shape are checked without touching the store.

The ``email_confirmation_{token}`` record written by ``remember`` is
bookkeeping only. Validation never consults it.
"""

import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from jose import JWTError, jwt

from healthscan.errors import StorageFailure
from healthscan.logging_config import get_logger
from healthscan.settings import settings
from healthscan.storage.kv import KVStore
from healthscan.waitlist.models import is_valid_email, utcnow

logger = get_logger(__name__)

TOKEN_PREFIX = "email_confirmation_"
TOKEN_TYPE = "email_confirmation"
JWT_ALGORITHM = "HS256"


def token_key(token: str) -> str:
    return f"{TOKEN_PREFIX}{token}"


def now_millis() -> int:
    return int(time.time() * 1000)


class TokenErrorKind(str, Enum):
    """Why a token failed validation."""

    EXPIRED = "Expired"
    MALFORMED_TOKEN = "MalformedToken"
    MALFORMED_EMAIL = "MalformedEmail"


@dataclass
class TokenValidation:
    """Result of validating a confirmation token."""

    valid: bool
    email: str | None = None
    error: TokenErrorKind | None = None


class ConfirmationTokenManager:
    """Issues and validates confirmation tokens."""

    def __init__(
        self,
        secret_key: str | None = None,
        ttl_hours: int | None = None,
        kv: KVStore | None = None,
    ):
        self.secret_key = secret_key or settings.token_secret_key
        hours = ttl_hours if ttl_hours is not None else settings.confirmation_token_ttl_hours
        self.ttl_ms = hours * 60 * 60 * 1000
        self.kv = kv

    # ==================== ISSUE / VALIDATE ====================

    def issue(self, email: str, now_ms: int | None = None) -> str:
        """Mint a token for email.

        Args:
            email: Normalized email address
            now_ms: Issue time in epoch milliseconds (defaults to now)

        Returns:
            URL-safe token string
        """
        claims = {
            "email": email,
            "iat_ms": now_ms if now_ms is not None else now_millis(),
            "nonce": secrets.token_urlsafe(8),
            "type": TOKEN_TYPE,
        }
        return jwt.encode(claims, self.secret_key, algorithm=JWT_ALGORITHM)

    def validate(self, token: str, now_ms: int | None = None) -> TokenValidation:
        """Check signature, age and embedded email. Never raises."""
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[JWT_ALGORITHM])
        except JWTError as e:
            logger.info("confirmation_token_rejected", reason=str(e))
            return TokenValidation(valid=False, error=TokenErrorKind.MALFORMED_TOKEN)

        email = claims.get("email")
        issued_at = claims.get("iat_ms")
        if (
            claims.get("type") != TOKEN_TYPE
            or not isinstance(email, str)
            or not isinstance(issued_at, int)
            or isinstance(issued_at, bool)
            or not isinstance(claims.get("nonce"), str)
        ):
            return TokenValidation(valid=False, error=TokenErrorKind.MALFORMED_TOKEN)

        now = now_ms if now_ms is not None else now_millis()
        if now - issued_at > self.ttl_ms:
            return TokenValidation(valid=False, email=email, error=TokenErrorKind.EXPIRED)

        if not is_valid_email(email):
            return TokenValidation(valid=False, error=TokenErrorKind.MALFORMED_EMAIL)

        return TokenValidation(valid=True, email=email)

    # ==================== BOOKKEEPING ====================

    def remember(self, token: str, email: str, position: int) -> None:
        """Store the auxiliary record for an issued token, best-effort."""
        if self.kv is None:
            return
        record: dict[str, Any] = {
            "email": email,
            "position": position,
            "createdAt": utcnow().isoformat(),
            "confirmed": False,
        }
        try:
            self.kv.set(token_key(token), record)
        except StorageFailure as e:
            logger.warning("confirmation_record_not_stored", email=email, error=e.message)

    def forget(self, token: str) -> None:
        """Delete the auxiliary record for token, best-effort."""
        if self.kv is None:
            return
        try:
            self.kv.delete(token_key(token))
        except StorageFailure as e:
            logger.warning("confirmation_record_not_deleted", error=e.message)
