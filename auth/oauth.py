"""
auth/oauth.py -- Authlib OAuth/OIDC provider registry and profile normalization.

build_oauth_registry() registers only providers with both client id and
secret configured. fetch_oauth_profile() turns the provider's token response
into an OAuthProfile that AuthService.oauth_login() consumes.

Security notes:
  [H1] Email verification is mandatory. An unverified email from a provider
       could belong to an attacker who added a victim's address without
       confirming it, and oauth_login() links identities by email. Profiles
       without a verified email raise UnauthorizedError.

  The OAuth state parameter (CSRF protection) is handled by authlib through
  Starlette's SessionMiddleware in the surrounding service layer.

Supported providers:
  github -- authorization code flow; static endpoints.
  google -- OIDC discovery.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.errors import UnauthorizedError
from auth.models import OAuthProfile
from core.config import Settings

logger = logging.getLogger("authcore.auth.oauth")


# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------


def build_oauth_registry(settings: Settings) -> OAuth:
    oauth = OAuth()

    # GitHub -- static endpoints (no OIDC discovery document)
    if settings.github_client_id and settings.github_client_secret:
        oauth.register(
            name="github",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )
        logger.info("GitHub OAuth provider registered")

    if settings.google_client_id and settings.google_client_secret:
        oauth.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    return oauth


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return {"name", "label"} for every configured provider."""
    providers: list[dict] = []
    if settings.github_client_id and settings.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    if settings.google_client_id and settings.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    return providers


# ---------------------------------------------------------------------------
# Profile extraction -- provider-specific normalization [H1]
# ---------------------------------------------------------------------------


async def fetch_oauth_profile(client, provider: str, token: dict) -> OAuthProfile:
    """Build an OAuthProfile from the token returned by authlib's code exchange.

    Args:
        client:   The authlib client for this provider (oauth.create_client(provider)).
        provider: "github" or "google".
        token:    The token dict from authorize_access_token().

    Raises:
        UnauthorizedError: unknown provider or no verified email.
    """
    if provider == "github":
        resp = await client.get("user", token=token)
        resp.raise_for_status()
        emails_resp = await client.get("user/emails", token=token)
        emails_resp.raise_for_status()
        return profile_from_github(resp.json(), emails_resp.json())
    if provider == "google":
        return profile_from_userinfo(provider, token.get("userinfo") or {})
    raise UnauthorizedError(f"Unknown OAuth provider: {provider!r}")


def profile_from_github(user: dict, emails: list[dict]) -> OAuthProfile:
    """Normalize GitHub's /user and /user/emails responses.

    GitHub does not put the email in the token, and the profile email may be
    unverified or hidden. Only the entry with primary=true AND verified=true
    is accepted.
    """
    email = next((e["email"] for e in emails if e.get("primary") and e.get("verified")), None)
    if not email:
        raise UnauthorizedError("GitHub login failed: no primary verified email on the account")
    return OAuthProfile(
        provider="github",
        external_id=str(user["id"]),
        email=email,
        name=user.get("name") or user.get("login"),
        picture=user.get("avatar_url"),
    )


def profile_from_userinfo(provider: str, userinfo: dict) -> OAuthProfile:
    """Normalize an OIDC userinfo claim set.

    Providers that omit email_verified are treated as unverified.
    """
    if not userinfo.get("email_verified", False):
        raise UnauthorizedError(f"{provider} login failed: email is not verified")
    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise UnauthorizedError(f"{provider} login failed: missing email or sub claim")
    return OAuthProfile(
        provider=provider,
        external_id=str(subject),
        email=email,
        name=userinfo.get("name"),
        picture=userinfo.get("picture"),
    )
