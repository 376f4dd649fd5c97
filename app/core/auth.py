"""Shared-secret guards for admin and cron endpoints."""

import hmac

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings

_bearer_scheme = HTTPBearer(auto_error=False)


def _token_matches(presented: str, expected: str) -> bool:
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


async def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> str:
    """FastAPI dependency guarding the admin webhook tooling.

    Fails closed: when no admin token is configured the endpoints answer 503.
    Returns a caller label stored on request state for audit logging.
    """
    expected = get_settings().admin_api_token
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API is not configured")

    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    if not _token_matches(credentials.credentials, expected):
        raise HTTPException(status_code=403, detail="Admin access required")

    request.state.user_id = "admin"
    return "admin"


async def require_cron(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> str:
    """FastAPI dependency for the external cron trigger (Bearer CRON_SECRET)."""
    expected = get_settings().cron_secret
    if not expected:
        raise HTTPException(status_code=503, detail="Cron trigger is not configured")

    if credentials is None or not _token_matches(credentials.credentials, expected):
        raise HTTPException(status_code=401, detail="Invalid cron credentials")

    request.state.user_id = "cron"
    return "cron"
