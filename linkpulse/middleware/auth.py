"""
Bearer-token authentication for the dashboard API.

linkpulse does not do login/registration. The auth provider issues tokens;
we validate each one server-side by calling the provider's
/auth/v1/user endpoint and trust the returned user id as the owner id.
"""

from dataclasses import dataclass

import httpx
from fastapi import Request

from linkpulse.config import get_settings
from linkpulse.errors import TransientStoreError, Unauthorized

import structlog

logger = structlog.get_logger()

PROVIDER_TIMEOUT_SECONDS = 5.0


@dataclass
class OwnerContext:
    owner_id: str
    email: str | None = None


async def _validate_token(token: str) -> dict:
    """Ask the auth provider who this token belongs to."""
    settings = get_settings()
    try:
        async with httpx.AsyncClient(timeout=PROVIDER_TIMEOUT_SECONDS) as client:
            resp = await client.get(
                f"{settings.auth_provider_url}/auth/v1/user",
                headers={
                    "Authorization": f"Bearer {token}",
                    "apikey": settings.auth_provider_api_key,
                },
            )
    except httpx.HTTPError as e:
        logger.error("auth_provider_unreachable", error=str(e), error_type=type(e).__name__)
        raise TransientStoreError("Authentication is temporarily unavailable.")
    if resp.status_code != 200:
        raise Unauthorized("Invalid or expired token.", headers={"WWW-Authenticate": "Bearer"})
    return resp.json()


async def require_owner(request: Request) -> OwnerContext:
    """FastAPI dependency: extracts the Bearer token and resolves the owner."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer ") or not auth_header[7:].strip():
        raise Unauthorized("Missing Bearer token.", headers={"WWW-Authenticate": "Bearer"})

    user = await _validate_token(auth_header[7:].strip())
    owner_id = user.get("id")
    if not owner_id:
        raise Unauthorized("Token is not bound to a user.", headers={"WWW-Authenticate": "Bearer"})

    return OwnerContext(owner_id=str(owner_id), email=user.get("email"))
