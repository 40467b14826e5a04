"""
Shared-secret authentication for the hooks and admin endpoints.

The posting backend and the admin console send one of the configured keys
in ``X-API-KEY``. With no keys configured (local development) every
request is accepted.
"""

import hmac

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from src.config.settings import get_settings

api_key_header = APIKeyHeader(name="X-API-KEY", auto_error=False)


def _matches_any(candidate: str, keys: list[str]) -> bool:
    # Compare against every key so timing does not reveal which one matched
    found = False
    for key in keys:
        found |= hmac.compare_digest(candidate.encode(), key.encode())
    return found


async def verify_api_key(api_key: str | None = Security(api_key_header)) -> str:
    """
    Verify the X-API-KEY header.

    Returns:
        The validated API key, or ``"dev-mode"`` when auth is disabled.

    Raises:
        HTTPException: 401 if the key is missing or unknown.
    """
    keys = get_settings().api_key_list
    if not keys:
        return "dev-mode"

    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-KEY header.",
        )
    if not _matches_any(api_key, keys):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
    return api_key
