"""Shared API key checks for the two callers of this service.

Learner identity and admin accounts are managed by the platform's identity
layer; this service only checks which caller it is talking to:

- the administration layer and suggestion producer (admin key)
- the enrolment/content platform reporting learner events (platform key)

Keys are compared by SHA256 digest with a constant-time comparison.
"""
import hashlib
import hmac
from fastapi import HTTPException, Security, Depends
from fastapi.security import APIKeyHeader
from typing import Optional

from splitlab.config import Settings, get_settings

# API key header
api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)


def hash_api_key(api_key: str) -> str:
    """
    Hash an API key using SHA256.

    Args:
        api_key: Plain text API key

    Returns:
        SHA256 hex digest of the API key
    """
    return hashlib.sha256(api_key.encode()).hexdigest()


def verify_api_key(provided: Optional[str], expected: str) -> bool:
    """Constant-time check that a provided key matches the configured one."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(hash_api_key(provided), hash_api_key(expected))


def _reject(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"}
    )


async def require_admin(
    api_key: Optional[str] = Security(api_key_header),
    settings: Settings = Depends(get_settings)
) -> str:
    """
    Dependency for lifecycle controls, creation and read operations.

    Usage:
        @router.post("/split-tests/{split_test_id}/start")
        def start(caller: str = Depends(require_admin)):
            ...

    Raises:
        HTTPException: 401 if the API key is missing or is not the admin key
    """
    if not api_key:
        raise _reject("Missing API key")
    if not verify_api_key(api_key, settings.admin_api_key):
        raise _reject("Invalid API key")
    return "admin"


async def require_platform(
    api_key: Optional[str] = Security(api_key_header),
    settings: Settings = Depends(get_settings)
) -> str:
    """
    Dependency for learner enrolment and progress events.

    The admin key is accepted too so operators can replay events by hand.

    Raises:
        HTTPException: 401 if the API key is missing or unknown
    """
    if not api_key:
        raise _reject("Missing API key")
    if verify_api_key(api_key, settings.platform_api_key):
        return "platform"
    if verify_api_key(api_key, settings.admin_api_key):
        return "admin"
    raise _reject("Invalid API key")
