"""Middleware: bearer-token authentication."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from plantsense.services.auth import User

if TYPE_CHECKING:
    from plantsense.services.auth import AuthService

_bearer_scheme = HTTPBearer(auto_error=False)


def _get_auth_from_request(request: Request) -> AuthService:
    auth: AuthService = request.app.state.auth
    return auth


async def require_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> str:
    """Return the raw bearer token, or 401 if the header is missing."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing session token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def require_user(request: Request, token: Annotated[str, Depends(require_token)]) -> User:
    """Resolve 'Authorization: Bearer <token>' to a logged-in user."""
    user = _get_auth_from_request(request).user_for_token(token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing session token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
