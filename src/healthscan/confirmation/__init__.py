"""Email confirmation tokens."""

from healthscan.confirmation.tokens import (
    ConfirmationTokenManager,
    TokenErrorKind,
    TokenValidation,
)

__all__ = ["ConfirmationTokenManager", "TokenErrorKind", "TokenValidation"]
