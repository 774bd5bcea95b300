"""
Shared-secret authentication for refresh triggers and tenant routes.

Callers send ``Authorization: Bearer <REFRESH_SECRET>``. The comparison
is constant-time. Without a configured secret the routes are open, but
only outside production.
"""

import hmac

from fastapi import HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from forum_tracker.config.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


async def verify_refresh_secret(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> str:
    """
    Verify the bearer secret.

    Returns:
        "dev-mode" when no secret is configured outside production, else
        "authorized"

    Raises:
        HTTPException: 401 for a missing or wrong secret, 503 when
            production runs without a secret
    """
    settings = get_settings()

    if not settings.refresh_secret:
        if settings.is_production:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="REFRESH_SECRET is not configured",
            )
        return "dev-mode"

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not hmac.compare_digest(
        credentials.credentials.encode("utf-8"),
        settings.refresh_secret.encode("utf-8"),
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return "authorized"
