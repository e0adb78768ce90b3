# account_service/tokens.py
"""Signed access/refresh tokens.

Tokens are stateless: validity is the signature plus ``exp`` at the time of
verification. There is no revocation list.
"""
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from jose import JWTError, jwt

from .schemas import TokenClaims, TokenPair

log = logging.getLogger(__name__)

ALGORITHM = "HS256"

_DURATION = re.compile(r"^\s*(\d+)\s*(ms|s|m|h|d|w|y)?\s*$", re.IGNORECASE)
_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "y": timedelta(days=365),
}


class InvalidTokenError(Exception):
    """Token is malformed, signed with another secret, or expired."""


def parse_duration(value) -> timedelta:
    """Turn ``"15m"``, ``"12h"``, ``"7d"`` or a bare number of seconds into
    a timedelta."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    match = _DURATION.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _UNITS[(unit or "s").lower()]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_expires_in="7d",
        refresh_expires_in="30d",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if not access_secret or not refresh_secret:
            raise RuntimeError("Both token secrets must be configured")
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.access_ttl = parse_duration(access_expires_in)
        self.refresh_ttl = parse_duration(refresh_expires_in)
        self.clock = clock or _utcnow

    @classmethod
    def from_settings(cls, settings) -> "TokenIssuer":
        return cls(
            settings.jwt_secret,
            settings.refresh_token_secret,
            settings.jwt_expires_in,
            settings.refresh_token_expires_in,
        )

    def _encode(self, claims: TokenClaims, secret: str, ttl: timedelta) -> str:
        now = self.clock()
        to_encode = claims.model_dump()
        to_encode.update({"iat": now, "exp": now + ttl})
        return jwt.encode(to_encode, secret, algorithm=ALGORITHM)

    def _decode(self, token: str, secret: str, message: str) -> TokenClaims:
        try:
            payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
            return TokenClaims.model_validate(payload)
        except (JWTError, ValueError, TypeError) as ex:
            log.debug("token rejected: %s", ex)
            raise InvalidTokenError(message) from ex

    def generate_access_token(self, claims: TokenClaims) -> str:
        return self._encode(claims, self.access_secret, self.access_ttl)

    def generate_refresh_token(self, claims: TokenClaims) -> str:
        return self._encode(claims, self.refresh_secret, self.refresh_ttl)

    def generate(self, claims: TokenClaims) -> TokenPair:
        return TokenPair(
            access_token=self.generate_access_token(claims),
            refresh_token=self.generate_refresh_token(claims),
        )

    def verify_access(self, token: str) -> TokenClaims:
        return self._decode(token, self.access_secret, "Invalid or expired token")

    def verify_refresh(self, token: str) -> TokenClaims:
        return self._decode(
            token, self.refresh_secret, "Invalid or expired refresh token"
        )
