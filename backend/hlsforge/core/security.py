"""API key authentication for the REST surface.

Clients send ``Authorization: Bearer <API_KEY>``. Rejection happens before
any handler runs, so an unauthenticated request has no side effects.
"""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_api_key(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """FastAPI dependency validating the bearer API key.

    Raises:
        HTTPException: 401 if the header is missing or the key is wrong
    """
    if credentials is None:
        header = request.headers.get("Authorization", "").strip()
        if not header:
            raise _unauthorized("Authorization header is required")
        if header.lower() == "bearer":
            raise _unauthorized("API key is required")
        raise _unauthorized("Authorization header must start with 'Bearer '")

    token = credentials.credentials.strip()

    expected = request.app.state.container.settings.API_KEY
    if not secrets.compare_digest(token.encode(), expected.encode()):
        raise _unauthorized("Invalid API key")
    return token


HOOK_SECRET_HEADER = "X-Hook-Secret"


async def require_hook_secret(request: Request) -> None:
    """FastAPI dependency checking the shared tusd hook secret.

    The secret is read from the ``X-Hook-Secret`` header or the ``secret``
    query parameter of the hook URL. No check is made when
    ``TUS_HOOK_SECRET`` is unset.

    Raises:
        HTTPException: 401 if the secret is missing or wrong
    """
    expected = request.app.state.container.settings.TUS_HOOK_SECRET
    if not expected:
        return

    provided = request.headers.get(HOOK_SECRET_HEADER) or request.query_params.get("secret")
    if not provided:
        raise _unauthorized("Hook secret is required")
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        raise _unauthorized("Invalid hook secret")
