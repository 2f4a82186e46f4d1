"""Cookie-based session guard."""

import logging
from typing import Optional

from fastapi import Depends, Request

from .keycloak import AuthError, Identity, KeycloakDirectory

logger = logging.getLogger(__name__)

SESSION_COOKIE = "auth-token"


class Unauthenticated(Exception):
    """The request carries no valid session."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)
        self.message = message


def get_directory(request: Request) -> KeycloakDirectory:
    """Directory service client created at startup."""
    return request.app.state.directory


def session_token(request: Request) -> Optional[str]:
    cookie_name = getattr(request.app.state, "session_cookie_name", SESSION_COOKIE)
    return request.cookies.get(cookie_name) or None


async def authenticate(request: Request, directory: KeycloakDirectory) -> Identity:
    """
    Resolve the caller's identity from the session cookie.

    Every call validates the token against the directory; results are
    not cached between requests.

    Raises:
        Unauthenticated: If the cookie is missing or the token is rejected
    """
    token = session_token(request)
    if not token:
        raise Unauthenticated()

    try:
        identity = await directory.validate_token(token)
    except AuthError as e:
        logger.info(f"Rejected session on {request.url.path}: {e.message}")
        raise Unauthenticated(e.message)

    request.state.identity = identity
    return identity


async def require_identity(
    request: Request,
    directory: KeycloakDirectory = Depends(get_directory)
) -> Identity:
    """FastAPI dependency for routes that need a logged-in caller."""
    return await authenticate(request, directory)


async def optional_identity(
    request: Request,
    directory: KeycloakDirectory = Depends(get_directory)
) -> Optional[Identity]:
    """Like require_identity, but anonymous callers get None."""
    try:
        return await authenticate(request, directory)
    except Unauthenticated:
        return None
