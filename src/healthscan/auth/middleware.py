"""Admin authentication for FastAPI."""

import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from healthscan.errors import Unauthorized
from healthscan.logging_config import get_logger
from healthscan.settings import settings

logger = get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> None:
    """Require the admin API key as a Bearer token.

    Raises:
        HTTPException: 503 if no admin key is configured
        Unauthorized: Missing or wrong key
    """
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API not configured",
        )

    if not credentials or not hmac.compare_digest(
        credentials.credentials.encode("utf-8"), settings.admin_api_key.encode("utf-8")
    ):
        logger.warning("admin_auth_failed", path=request.url.path)
        raise Unauthorized("Admin access required")

    request.state.is_admin = True
