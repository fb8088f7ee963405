"""
auth/tokens.py -- Access token issuing and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry only the subject (user id as a
       string, which RFC 7519 requires), issued-at and expiry. Nothing else
       is trusted from the token: callers resolve the subject against the
       UserStore on every request.

  Secret: injected once at construction from Settings.secret_key and never
       rotated at runtime. Settings rejects keys shorter than 32 chars [M6].

  No revocation list: an access token is valid until exp. Keep
       ACCESS_TOKEN_EXPIRE_MINUTES short.

Layer rule: imports core/ (for Settings) and auth/ only.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.errors import InternalError, UnauthorizedError
from core.config import Settings

if TYPE_CHECKING:
    from auth.models import User

logger = logging.getLogger("authcore.auth.tokens")

_ALGORITHM = "HS256"


class AccessTokenIssuer:
    """Stateless signer/verifier for short-lived bearer tokens."""

    def __init__(self, secret_key: str, expire_minutes: int, algorithm: str = _ALGORITHM) -> None:
        self._secret_key = secret_key
        self.expire_minutes = expire_minutes
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> AccessTokenIssuer:
        return cls(settings.secret_key, settings.access_token_expire_minutes)

    def issue(self, user: User, now: datetime | None = None) -> str:
        """Encode a signed JWT for user.

        Args:
            user: A persisted user (id must be set).
            now:  Issue time override, mainly for tests. Defaults to UTC now.
        """
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(user.id),
            "iat": issued_at,
            "exp": issued_at + timedelta(minutes=self.expire_minutes),
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)
        except JWTError as exc:
            logger.exception("Access token signing failed")
            raise InternalError() from exc

    def verify(self, token: str) -> str:
        """Check signature and expiry; return the subject (user id string).

        Raises UnauthorizedError on any failure. The reason is logged at
        DEBUG but not surfaced -- callers only learn the token is unusable.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except JWTError as exc:
            logger.debug("Access token rejected: %s", exc)
            raise UnauthorizedError("Invalid or expired access token") from exc
        subject = payload.get("sub")
        if not subject:
            raise UnauthorizedError("Invalid or expired access token")
        return subject
