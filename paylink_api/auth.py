"""
Operator authentication for administrative endpoints.

Link creation, deposit and claim are public (claims are authorised by the
recipient's signature). Listing every link and reading the operator balance
are operator-only:
- If API_TOKEN is not set, operator endpoints are open (local development only)
- If API_TOKEN is set, they require the token via the X-API-Key header
- Query parameters are never accepted (prevents log/referrer leakage)
"""

import hmac
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from .config import Settings, get_settings


api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_token(
    api_key: Optional[str] = Depends(api_key_header),
    settings: Settings = Depends(get_settings),
) -> bool:
    """
    Verify the operator token if one is configured.

    Raises:
        HTTPException: 401 if the token is missing or wrong
    """
    # WARNING: Never run in production without API_TOKEN set
    if not settings.api_token:
        return True

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API token required. Provide via X-API-Key header.",
            headers={"WWW-Authenticate": "X-API-Key"},
        )

    if not hmac.compare_digest(api_key.encode("utf-8"), settings.api_token.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API token",
            headers={"WWW-Authenticate": "X-API-Key"},
        )

    return True
