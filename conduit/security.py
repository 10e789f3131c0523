"""
Credential service: password hashing and signed access tokens.

Passwords are hashed with bcrypt through passlib's ``CryptContext``; the
cost factor comes from ``settings.BCRYPT_ROUNDS``.

Tokens are HS256 JWTs carrying two claims:

- ``id``: the user id.
- ``exp``: absolute expiry in epoch seconds, issued-at + lifetime.

A ``TokenService`` is built once at startup from ``Settings`` and kept on
``app.state``; its key and lifetime never change for the life of the
process.  Expiry is checked against an injectable clock rather than inside
``jose.jwt.decode`` so callers (and tests) control what "now" means.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from conduit.config import Settings, settings
from conduit.exceptions import ExpiredToken, InvalidSignature, MalformedToken

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)


def hash_password(password: str) -> str:
    """Hash *password* with bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check *plain_password* against a stored hash; a garbled hash never matches."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        logger.warning("Stored password hash could not be identified")
        return False


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issue and verify access tokens with a fixed key and lifetime."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        lifetime: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._lifetime = lifetime
        self._clock = clock

    @classmethod
    def from_settings(cls, config: Settings) -> "TokenService":
        return cls(
            secret_key=config.SECRET_KEY,
            algorithm=config.JWT_ALGORITHM,
            lifetime=timedelta(seconds=config.ACCESS_TOKEN_TTL_SECONDS),
        )

    @property
    def lifetime(self) -> timedelta:
        return self._lifetime

    def issue(self, user_id: int, now: Optional[datetime] = None) -> str:
        """Return a signed token for *user_id* expiring one lifetime after *now*."""
        issued_at = now or self._clock()
        claims = {
            "id": int(user_id),
            "exp": int((issued_at + self.lifetime).timestamp()),
        }
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str, now: Optional[datetime] = None) -> int:
        """
        Return the user id carried by *token*.

        Raises
        ------
        MalformedToken
            The token does not parse as a JWT or lacks integer ``id`` /
            ``exp`` claims.
        InvalidSignature
            The signature does not match this service's key.
        ExpiredToken
            *now* (default: the service clock) is at or past ``exp``.
        """
        try:
            jwt.get_unverified_header(token)
            claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            logger.debug("Rejected malformed token: %s", exc)
            raise MalformedToken()

        user_id = claims.get("id")
        expires_at = claims.get("exp")
        if not _is_int(user_id) or not _is_int(expires_at):
            logger.debug("Rejected token with missing or non-integer claims")
            raise MalformedToken()

        try:
            jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.debug("Rejected token with bad signature: %s", exc)
            raise InvalidSignature()

        current = (now or self._clock()).timestamp()
        if current >= expires_at:
            logger.debug("Rejected token for user %s: expired", user_id)
            raise ExpiredToken()
        return user_id


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
