"""Session cookie helpers and the FastAPI authentication dependency.

The session identity is a signed token carrying the username. Browsers
send it in the `user` cookie set at login; API clients may send the same
token as `Authorization: Bearer <token>`. `get_current_user` resolves it
to a username or raises `Unauthenticated`.
"""

from typing import Optional

from fastapi import Request, Response, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import services
from .config import settings

COOKIE_NAME = "user"

bearer_scheme = HTTPBearer(auto_error=False)


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=60 * 60 * 24 * settings.SESSION_MAX_AGE_DAYS,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME, httponly=True, secure=settings.COOKIE_SECURE, samesite="lax")


def session_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    """Return the bearer token if present, otherwise the cookie value."""
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(COOKIE_NAME)


def get_current_user(request: Request,
                     credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)) -> str:
    """FastAPI dependency that returns the authenticated username.

    Raises `Unauthenticated` (HTTP 401) when no valid session is present
    or the user no longer exists.
    """
    return services.AuthService().resolve(session_token(request, credentials))
