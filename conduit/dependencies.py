from fastapi import Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.config import settings
from conduit.database import get_db
from conduit.exceptions import AuthError, MalformedToken, MissingCredentials
from conduit.models import User
from conduit.security import TokenService

# Authorization header schemes accepted in front of the token.
_TOKEN_SCHEMES = frozenset({"token", "bearer"})


class PaginationParams:
    """
    Reusable FastAPI dependency that parses ``limit`` / ``offset`` query
    parameters for article listings.

    Attributes
    ----------
    limit:
        Page size, clamped to ``settings.MAX_PAGE_SIZE`` regardless of the
        value supplied by the caller.
    offset:
        Number of articles to skip (0-based).
    """

    def __init__(
        self,
        limit: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            description="Number of articles returned (max 100).",
        ),
        offset: int = Query(
            0,
            ge=0,
            description="Number of articles to skip.",
        ),
    ) -> None:
        self.limit = min(limit, settings.MAX_PAGE_SIZE)
        self.offset = offset


def get_token_service(request: Request) -> TokenService:
    """The process-wide token service built at startup (see ``conduit.main``)."""
    return request.app.state.token_service


def _read_token(authorization: str | None) -> str | None:
    """Extract the token from ``Token <jwt>`` / ``Bearer <jwt>``; None when absent."""
    if not authorization:
        return None
    scheme, _, credentials = authorization.strip().partition(" ")
    credentials = credentials.strip()
    if scheme.lower() not in _TOKEN_SCHEMES or not credentials:
        raise MalformedToken()
    return credentials


async def _resolve_user(db: AsyncSession, tokens: TokenService, token: str) -> User:
    user = await db.get(User, tokens.verify(token))
    if user is None:
        # Validly signed token for a user that no longer exists.
        raise AuthError()
    return user


async def get_current_user(
    authorization: str | None = Header(None),
    tokens: TokenService = Depends(get_token_service),
    db: AsyncSession = Depends(get_db, scope="function"),
) -> User:
    """Required authentication: no usable token, no request."""
    token = _read_token(authorization)
    if token is None:
        raise MissingCredentials()
    return await _resolve_user(db, tokens, token)


async def get_optional_user(
    authorization: str | None = Header(None),
    tokens: TokenService = Depends(get_token_service),
    db: AsyncSession = Depends(get_db, scope="function"),
) -> User | None:
    """
    Optional authentication for anonymous reads.

    No header means an anonymous viewer; a header that is present but
    carries a bad token is still rejected.
    """
    token = _read_token(authorization)
    if token is None:
        return None
    return await _resolve_user(db, tokens, token)
