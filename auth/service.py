"""
auth/service.py -- Authentication orchestration.

AuthService is the only entry point the surrounding service layer needs:

  login(email, password)            password grant -> AuthResult
  refresh(email, refresh_object)    refresh grant  -> AuthResult
  oauth_login(profile)              third-party login -> User
  issue_refresh_token(user)         mint + persist a RefreshToken
  verify_access_token(token)        -> subject id
  get_current_user(token)           verify + resolve -> User
  list_users(filters, page, per_page)
  register(...) / change_password(...)

Collaborators are injected: settings, UserStore, RefreshTokenStore, and
optionally a PasswordHasher, AccessTokenIssuer and RefreshTokenManager. No
module-level state -- build_auth_service() is the one place that reads
get_settings().

Security:
  [C1] login() burns a bcrypt verify for unknown emails so response time and
       message are the same as for a wrong password.

  Refresh tokens are not consumed by refresh(). Replay is possible until
  expiry unless the caller deletes the token (RefreshTokenStore.delete) or
  rotates by calling issue_refresh_token() and deleting the old one.

Async callers (FastAPI async routes) use the a* variants, which run the
blocking store I/O and bcrypt work on the starlette thread pool.
"""

from __future__ import annotations

import logging
import uuid

from starlette.concurrency import run_in_threadpool

from auth.errors import BadRequestError, ConflictError, NotFoundError, UnauthorizedError
from auth.models import AuthResult, OAuthProfile, RefreshToken, User
from auth.passwords import PasswordHasher
from auth.refresh import RefreshTokenManager
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import AccessTokenIssuer
from core.config import Settings, get_settings

logger = logging.getLogger("authcore.auth.service")

_EMAIL_REQUIRED = "An email is required to generate a token"
_BAD_PASSWORD = "Incorrect email or password"
_BAD_REFRESH = "Incorrect email or refreshToken"
_EXPIRED_REFRESH = "Invalid refresh token."


class AuthService:
    def __init__(
        self,
        settings: Settings,
        users: UserStore,
        refresh_store: RefreshTokenStore,
        *,
        hasher: PasswordHasher | None = None,
        issuer: AccessTokenIssuer | None = None,
        refresh_manager: RefreshTokenManager | None = None,
    ) -> None:
        self.settings = settings
        self.users = users
        self.refresh_store = refresh_store
        self.hasher = hasher or PasswordHasher.from_settings(settings)
        self.issuer = issuer or AccessTokenIssuer.from_settings(settings)
        self.refresh_tokens = refresh_manager or RefreshTokenManager(
            refresh_store, expire_days=settings.refresh_token_expire_days
        )

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def find_and_generate_token(
        self,
        email: str | None,
        password: str | None = None,
        refresh_object: RefreshToken | None = None,
    ) -> AuthResult:
        """Run one login attempt and return the user with a fresh access token.

        A password (even an empty one) selects the password grant; otherwise
        refresh_object selects the refresh grant. Messages are public and
        identical for an unknown email and a wrong secret.
        """
        if not email:
            raise BadRequestError(_EMAIL_REQUIRED)

        user = self.users.find_by_email(email)

        if password is not None:
            if user is None or not user.hashed_password:
                self.hasher.burn(password)
            elif self.hasher.verify(password, user.hashed_password):
                return self._authenticated(user, "password")
            logger.warning("Password grant rejected")
            raise UnauthorizedError(_BAD_PASSWORD)

        if refresh_object is not None and refresh_object.user_email == email and user is not None:
            if self.refresh_tokens.is_expired(refresh_object):
                logger.warning("Refresh grant rejected: token expired for user %s", user.id)
                raise UnauthorizedError(_EXPIRED_REFRESH)
            return self._authenticated(user, "refresh")

        logger.warning("Refresh grant rejected")
        raise UnauthorizedError(_BAD_REFRESH)

    def login(self, email: str | None, password: str | None) -> AuthResult:
        """Password grant."""
        return self.find_and_generate_token(email, password=password if password is not None else "")

    def refresh(self, email: str | None, refresh_object: RefreshToken | None) -> AuthResult:
        """Refresh grant. Does not mint a new refresh token."""
        return self.find_and_generate_token(email, refresh_object=refresh_object)

    def _authenticated(self, user: User, grant: str) -> AuthResult:
        logger.info("User %s authenticated via %s grant", user.id, grant)
        return AuthResult(user=user, access_token=self.issuer.issue(user))

    # ------------------------------------------------------------------
    # Third-party identities
    # ------------------------------------------------------------------

    def oauth_login(self, profile: OAuthProfile) -> User:
        """Return the user for a third-party identity, creating or linking as needed.

        Existing users (matched by linked identity, else by email) get the
        provider id written (idempotent) and name/picture backfilled only when
        empty. New users get a random password that is hashed and discarded,
        so a password login can be added later via change_password().
        """
        user = self.users.find_by_service_or_email(profile.provider, profile.external_id, profile.email)
        if user is None:
            try:
                user = self.users.create(
                    User(
                        email=profile.email,
                        hashed_password=self.hasher.hash(uuid.uuid4().hex),
                        name=profile.name,
                        picture=profile.picture,
                        services={profile.provider: profile.external_id},
                    )
                )
                logger.info("Created user %s from %s login", user.id, profile.provider)
                return user
            except ConflictError:
                # Lost a create race with a concurrent login for the same identity
                user = self.users.find_by_service_or_email(profile.provider, profile.external_id, profile.email)
                if user is None:
                    raise
        return self._link(user, profile)

    def _link(self, user: User, profile: OAuthProfile) -> User:
        user.services[profile.provider] = profile.external_id
        if not user.name:
            user.name = profile.name
        if not user.picture:
            user.picture = profile.picture
        return self.users.update(user)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def issue_refresh_token(self, user: User) -> RefreshToken:
        return self.refresh_tokens.generate(user)

    def verify_access_token(self, token: str) -> str:
        return self.issuer.verify(token)

    def get_current_user(self, token: str) -> User:
        """Resolve a bearer token to its user. Unknown subjects are Unauthorized."""
        subject = self.issuer.verify(token)
        try:
            return self.users.get_by_id(subject)
        except NotFoundError:
            raise UnauthorizedError("Invalid or expired access token") from None

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def list_users(self, filters: dict | None = None, page: int = 1, per_page: int = 30) -> list[User]:
        return self.users.list_users(filters, page=page, per_page=per_page)

    def register(
        self,
        email: str | None,
        password: str | None,
        name: str | None = None,
        picture: str | None = None,
        role: str = "user",
    ) -> User:
        """Create a password-based account. ConflictError if the email is taken."""
        if not email:
            raise BadRequestError("An email is required")
        if not password:
            raise BadRequestError("A password is required")
        self.hasher.check_length(password)
        return self.users.create(
            User(
                email=email,
                hashed_password=self.hasher.hash(password),
                name=name,
                picture=picture,
                role=role,
            )
        )

    def change_password(self, user: User, new_password: str) -> User:
        """Hash new_password and persist it. The only path that re-hashes a user."""
        if not new_password:
            raise BadRequestError("A password is required")
        self.hasher.check_length(new_password)
        # Hash before the write so readers see either the old or the new hash
        user.hashed_password = self.hasher.hash(new_password)
        return self.users.update(user)

    # ------------------------------------------------------------------
    # Async variants
    # ------------------------------------------------------------------

    async def alogin(self, email: str | None, password: str | None) -> AuthResult:
        return await run_in_threadpool(self.login, email, password)

    async def arefresh(self, email: str | None, refresh_object: RefreshToken | None) -> AuthResult:
        return await run_in_threadpool(self.refresh, email, refresh_object)

    async def aoauth_login(self, profile: OAuthProfile) -> User:
        return await run_in_threadpool(self.oauth_login, profile)

    def close(self) -> None:
        self.refresh_store.close()
        self.users.close()


def build_auth_service(settings: Settings | None = None) -> AuthService:
    """Assemble an AuthService backed by settings.database_url.

    Both stores share one engine; AuthService.close() disposes it.
    """
    settings = settings or get_settings()
    users = UserStore(settings.database_url)
    refresh_store = RefreshTokenStore(engine=users.engine)
    return AuthService(settings, users, refresh_store)
