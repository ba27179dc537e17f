"""Request guard for the plugin API.

When ``INFER_INCEPTION_V3_API_KEY`` is set, every ``/api/v1`` route requires
``Authorization: Bearer <key>``; otherwise the plugin is open, as it is when
driven by a local host. Rejections are logged with the client and route.
"""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from infer_inception_v3.config import Settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False, description="Plugin API key (INFER_INCEPTION_V3_API_KEY)")


def _configured_key(request: Request) -> str | None:
    settings: Settings = request.app.state.settings
    return settings.api_key


def _rejection_reason(credentials: HTTPAuthorizationCredentials | None, expected: str) -> str | None:
    if credentials is None:
        return "Missing API key"
    if not secrets.compare_digest(credentials.credentials.encode(), expected.encode()):
        return "Invalid API key"
    return None


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Reject the request with 401 unless it carries the configured key."""
    expected = _configured_key(request)
    if expected is None:
        return

    reason = _rejection_reason(credentials, expected)
    if reason is None:
        return

    client = request.client.host if request.client else "unknown"
    logger.warning("%s for %s %s from %s", reason, request.method, request.url.path, client)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=reason,
        headers={"WWW-Authenticate": "Bearer"},
    )
