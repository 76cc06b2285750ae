"""
Authentication utilities for the web API.

Cron-triggered endpoints are protected by a shared bearer token
(CRON_SECRET). The check is enforced in production only, so local
development can hit the endpoints directly.
"""

import hmac

from fastapi import HTTPException, Request

from circleday.config import get_cron_secret, is_production


def verify_cron_token(authorization: str | None, secret: str | None) -> bool:
    """
    Check an Authorization header against the cron secret.

    Returns:
        True if the header is exactly "Bearer <secret>"
    """
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization, f"Bearer {secret}")


async def require_cron_secret(request: Request) -> None:
    """
    FastAPI dependency guarding cron endpoints.

    Raises:
        HTTPException: 401 in production when the bearer token is missing or wrong
    """
    if not is_production():
        return

    if not verify_cron_token(request.headers.get("authorization"), get_cron_secret()):
        raise HTTPException(status_code=401, detail="Unauthorized")
