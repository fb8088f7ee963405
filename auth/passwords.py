"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection hashes a password longer than 72 bytes, which bcrypt 4.x rejects.

Cost factor comes from Settings.password_hash_rounds -- 10+ in production,
a reduced value only when ENVIRONMENT=test [M8].

bcrypt is CPU-bound. Async callers go through the AuthService a* methods,
which run it on the starlette thread pool. Once started, a hash runs to
completion; there is no cancellation.

Layer rule: imports core/ (for Settings) and auth.errors only.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.errors import BadRequestError, InternalError
from core.config import Settings

logger = logging.getLogger("authcore.auth.passwords")

# bcrypt only reads the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Salted one-way hashing with a fixed cost factor.

    Usage:
        hasher = PasswordHasher.from_settings(settings)
        hashed = hasher.hash("secret")
        hasher.verify("secret", hashed)   # True
    """

    def __init__(self, rounds: int) -> None:
        self.rounds = rounds
        # Timing equalization [C1]: computed once so callers can burn the
        # same bcrypt work for an unknown account as for a wrong password.
        self._dummy_hash = self.hash("authcore_timing_dummy")

    @classmethod
    def from_settings(cls, settings: Settings) -> PasswordHasher:
        return cls(settings.password_hash_rounds)

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of plain.

        Callers reject passwords longer than MAX_PASSWORD_BYTES first (see
        check_length). Any other bcrypt failure surfaces as InternalError.
        """
        try:
            return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
        except (TypeError, ValueError) as exc:
            logger.exception("Password hashing failed")
            raise InternalError() from exc

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if plain matches hashed. Never raises on a mismatch."""
        if not hashed or plain is None:
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # Malformed stored hash or oversized input
            return False

    def burn(self, plain: str) -> None:
        """Run a verify against the dummy hash and discard the result."""
        self.verify(plain or "", self._dummy_hash)

    @staticmethod
    def check_length(plain: str) -> None:
        """Raise BadRequestError if plain is too long for bcrypt to hash whole."""
        if len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise BadRequestError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
