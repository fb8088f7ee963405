"""
auth/refresh.py -- Refresh token generation and validation.

Token format: "{user_id}.{secrets.token_hex(40)}". 40 random bytes give 320
bits of entropy. The id prefix is a lookup convenience only; validate()
confirms ownership against the user_email captured at issue time.

Tokens are not marked consumed on use. A token can be redeemed repeatedly
until it expires unless the service layer deletes it through
RefreshTokenStore.delete(). Callers that want rotation mint a new token with
generate() after each refresh grant.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.errors import UnauthorizedError
from auth.models import RefreshToken, as_utc

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import RefreshTokenStore

logger = logging.getLogger("authcore.auth.refresh")

_TOKEN_BYTES = 40
_DEFAULT_EXPIRE_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshTokenManager:
    def __init__(
        self,
        store: RefreshTokenStore,
        expire_days: int = _DEFAULT_EXPIRE_DAYS,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.expire_days = expire_days
        self._now = now

    def generate(self, user: User) -> RefreshToken:
        """Build, persist and return a new refresh token for user."""
        token = RefreshToken(
            token=f"{user.id}.{secrets.token_hex(_TOKEN_BYTES)}",
            user_id=user.id,
            user_email=user.email,
            expires=self._now() + timedelta(days=self.expire_days),
        )
        saved = self.store.insert(token)
        logger.info("Refresh token issued for user %s", user.id)
        return saved

    def is_expired(self, refresh_object: RefreshToken) -> bool:
        """Expiry is strict: a token whose expires equals now is already expired."""
        return not as_utc(refresh_object.expires) > self._now()

    def validate(self, refresh_object: RefreshToken | None, email: str) -> bool:
        """Return True if refresh_object belongs to email and has not expired.

        Raises UnauthorizedError otherwise.
        """
        if refresh_object is None or refresh_object.user_email != email or self.is_expired(refresh_object):
            raise UnauthorizedError("Invalid refresh token")
        return True

    @staticmethod
    def owner_id(token: str) -> str:
        """Return the claimed owner id embedded in a token string. Untrusted."""
        return token.split(".", 1)[0]
