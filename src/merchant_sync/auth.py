"""Authentication and rate limiting helpers for the API."""

import os
import secrets
import logging

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

security = HTTPBearer()

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


def _check_bearer(provided: str, env_var: str) -> str:
    expected = os.getenv(env_var)
    if not expected:
        logger.error(f"{env_var} environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return provided


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(security)) -> str:
    """Verify the API key from the Authorization header.

    Args:
        credentials: HTTP Bearer credentials from the request.

    Returns:
        The verified API key.

    Raises:
        HTTPException: If API key is invalid or not configured.
    """
    return _check_bearer(credentials.credentials, "API_KEY")


async def verify_cron_secret(credentials: HTTPAuthorizationCredentials = Security(security)) -> str:
    """Verify the scheduler's ``Bearer CRON_SECRET`` header."""
    return _check_bearer(credentials.credentials, "CRON_SECRET")
