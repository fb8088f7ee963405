"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
service do the work; these only own the domain shape.

Layer rule: stdlib only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

ROLES: tuple[str, ...] = ("user", "admin")


def as_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime. Naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class User:
    """An identity record.

    hashed_password is None only for records created outside this core;
    OAuth-only users get a random throwaway password hashed at creation.
    services maps provider name -> the provider's stable user id and is
    filled in by AuthService.oauth_login().
    """

    email: str
    id: int | None = None
    hashed_password: str | None = None
    name: str | None = None
    picture: str | None = None
    role: str = "user"  # "user", "admin"
    services: dict[str, str] = field(default_factory=dict)
    created_at: str | None = None  # ISO 8601, UTC

    def to_public(self) -> dict:
        """Fields safe to hand to the caller. Never includes the hash."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "picture": self.picture,
            "role": self.role,
            "created_at": self.created_at,
        }


@dataclass
class RefreshToken:
    """A long-lived credential for the refresh grant.

    token is "{user_id}.{80 hex chars}". The prefix lets a reader see the
    claimed owner without a lookup, but user_email captured at issue time is
    what validation checks.
    """

    token: str
    user_id: int
    user_email: str
    expires: datetime  # timezone-aware UTC
    id: int | None = None


@dataclass
class OAuthProfile:
    """A third-party identity normalized across providers."""

    provider: str  # "github", "google"
    external_id: str
    email: str
    name: str | None = None
    picture: str | None = None


@dataclass
class AuthResult:
    user: User
    access_token: str
