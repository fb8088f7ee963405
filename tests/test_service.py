"""Tests for auth/service.py -- the grant state machine and identity linking.

Covers:
- password grant: success, identical message for unknown email / wrong password
- missing email -> BadRequest
- refresh grant: success, expired, mismatched email, no new token minted
- oauth_login(): create, idempotent linking, backfill-only-if-empty, email match
- register() / change_password() / get_current_user() / list_users()
- async variants
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import BadRequestError, ConflictError, UnauthorizedError
from auth.models import OAuthProfile, RefreshToken, User
from auth.service import build_auth_service
from auth.store import UserStore
from auth.tokens import AccessTokenIssuer


def _profile(**overrides) -> OAuthProfile:
    fields = {
        "provider": "google",
        "external_id": "g-123",
        "email": "oauth@example.com",
        "name": "OAuth Person",
        "picture": "https://example.com/p.png",
    }
    fields.update(overrides)
    return OAuthProfile(**fields)


# ---------------------------------------------------------------------------
# Password grant
# ---------------------------------------------------------------------------


def test_login_returns_user_and_access_token(service, make_user, password):
    user = make_user()
    result = service.login(user.email, password)
    assert result.user.id == user.id
    assert service.verify_access_token(result.access_token) == str(user.id)


def test_login_failures_share_one_message(service, make_user):
    make_user(email="real@example.com")
    with pytest.raises(UnauthorizedError) as unknown:
        service.login("missing@example.com", "anything")
    with pytest.raises(UnauthorizedError) as wrong:
        service.login("real@example.com", "wrongpass")
    assert unknown.value.message == wrong.value.message == "Incorrect email or password"
    assert unknown.value.is_public and wrong.value.is_public


@pytest.mark.parametrize("email", [None, ""])
def test_login_requires_email(service, email):
    with pytest.raises(BadRequestError, match="An email is required to generate a token"):
        service.login(email, "pw")


def test_login_with_empty_password_is_unauthorized(service, make_user):
    user = make_user()
    with pytest.raises(UnauthorizedError, match="Incorrect email or password"):
        service.login(user.email, "")


# ---------------------------------------------------------------------------
# Refresh grant
# ---------------------------------------------------------------------------


def test_refresh_with_valid_token(service, refresh_store, make_user):
    user = make_user()
    issued = service.issue_refresh_token(user)
    refresh_object = refresh_store.get_by_token(issued.token)
    result = service.refresh(user.email, refresh_object)
    assert result.user.id == user.id
    assert service.verify_access_token(result.access_token) == str(user.id)


def test_refresh_does_not_mint_or_consume_tokens(service, refresh_store, make_user):
    user = make_user()
    issued = service.issue_refresh_token(user)
    service.refresh(user.email, refresh_store.get_by_token(issued.token))
    # Still redeemable: refresh tokens are not revoked on use
    service.refresh(user.email, refresh_store.get_by_token(issued.token))
    assert refresh_store.get_by_token(issued.token) is not None


def test_refresh_with_expired_token(service, make_user):
    user = make_user()
    expired = RefreshToken(
        token=f"{user.id}.00",
        user_id=user.id,
        user_email=user.email,
        expires=datetime.now(timezone.utc) - timedelta(minutes=1),
    )
    with pytest.raises(UnauthorizedError) as exc_info:
        service.refresh(user.email, expired)
    assert exc_info.value.message == "Invalid refresh token."


def test_refresh_with_mismatched_email(service, make_user):
    owner = make_user(email="owner@example.com")
    make_user(email="attacker@example.com")
    token = service.issue_refresh_token(owner)
    with pytest.raises(UnauthorizedError, match="Incorrect email or refreshToken"):
        service.refresh("attacker@example.com", token)


def test_refresh_without_token(service, make_user):
    user = make_user()
    with pytest.raises(UnauthorizedError, match="Incorrect email or refreshToken"):
        service.refresh(user.email, None)


def test_refresh_for_unknown_user(service):
    token = RefreshToken(
        token="99.ab",
        user_id=99,
        user_email="gone@example.com",
        expires=datetime.now(timezone.utc) + timedelta(days=1),
    )
    with pytest.raises(UnauthorizedError, match="Incorrect email or refreshToken"):
        service.refresh("gone@example.com", token)


# ---------------------------------------------------------------------------
# Third-party login
# ---------------------------------------------------------------------------


def test_oauth_login_creates_user_with_hidden_password(service, user_store):
    user = service.oauth_login(_profile())
    assert user.id is not None
    assert user.services == {"google": "g-123"}
    assert user.name == "OAuth Person"
    stored = user_store.get_by_id(user.id)
    assert stored.hashed_password and stored.hashed_password.startswith("$2")
    assert "hashed_password" not in user.to_public()


def test_oauth_login_is_idempotent(service, user_store):
    first = service.oauth_login(_profile())
    second = service.oauth_login(_profile(name="Renamed", picture="https://example.com/new.png"))
    assert first.id == second.id
    stored = user_store.get_by_id(first.id)
    assert stored.name == "OAuth Person"
    assert stored.picture == "https://example.com/p.png"
    assert len(user_store.list_users()) == 1


def test_oauth_login_links_existing_email_account(service, make_user, user_store):
    existing = make_user(email="oauth@example.com")
    linked = service.oauth_login(_profile(provider="github", external_id="42"))
    assert linked.id == existing.id
    stored = user_store.get_by_id(existing.id)
    assert stored.services == {"github": "42"}
    assert stored.name == "OAuth Person"
    assert stored.hashed_password == existing.hashed_password


def test_oauth_login_keeps_password_login_working(service, make_user, password):
    user = make_user(email="oauth@example.com", name="Original")
    service.oauth_login(_profile())
    assert service.login(user.email, password).user.name == "Original"


def test_oauth_login_matches_linked_identity_after_email_change(service, user_store):
    user = service.oauth_login(_profile())
    user.email = "changed@example.com"
    user_store.update(user)
    again = service.oauth_login(_profile())
    assert again.id == user.id


def test_oauth_login_recovers_from_create_race(service, user_store, monkeypatch):
    winner = user_store.create(User(email="oauth@example.com"))
    calls = []
    original = UserStore.find_by_service_or_email

    def _first_call_misses(self, *args):
        calls.append(args)
        if len(calls) == 1:
            return None
        return original(self, *args)

    monkeypatch.setattr(UserStore, "find_by_service_or_email", _first_call_misses)
    user = service.oauth_login(_profile())
    assert user.id == winner.id
    assert user.services == {"google": "g-123"}


# ---------------------------------------------------------------------------
# Tokens and users
# ---------------------------------------------------------------------------


def test_get_current_user_resolves_subject(service, make_user, password):
    user = make_user()
    token = service.login(user.email, password).access_token
    assert service.get_current_user(token).id == user.id


def test_get_current_user_for_unknown_subject(service, settings):
    token = AccessTokenIssuer.from_settings(settings).issue(User(id=424242, email="ghost@example.com"))
    with pytest.raises(UnauthorizedError):
        service.get_current_user(token)


def test_register_hashes_password(service, password):
    user = service.register("new@example.com", password, name="New")
    assert user.hashed_password != password
    assert service.login("new@example.com", password).user.id == user.id


def test_register_duplicate_email(service, make_user, password):
    make_user(email="dup@example.com")
    with pytest.raises(ConflictError) as exc_info:
        service.register("dup@example.com", password)
    assert exc_info.value.field == "email"


def test_register_requires_password(service):
    with pytest.raises(BadRequestError):
        service.register("x@example.com", "")


@pytest.mark.parametrize("too_long", ["x" * 73, "\u00e9" * 37])
def test_register_rejects_password_over_bcrypt_limit(service, user_store, too_long):
    with pytest.raises(BadRequestError, match="at most 72 bytes") as exc_info:
        service.register("long@example.com", too_long)
    assert exc_info.value.status_code == 400
    assert exc_info.value.is_public
    assert user_store.find_by_email("long@example.com") is None


def test_register_accepts_password_at_bcrypt_limit(service):
    user = service.register("edge@example.com", "x" * 72)
    assert service.login(user.email, "x" * 72).user.id == user.id


def test_change_password(service, make_user, password):
    user = make_user()
    service.change_password(user, "brand-new-password")
    with pytest.raises(UnauthorizedError):
        service.login(user.email, password)
    assert service.login(user.email, "brand-new-password").user.id == user.id


def test_change_password_rejects_password_over_bcrypt_limit(service, make_user, password):
    user = make_user()
    with pytest.raises(BadRequestError, match="at most 72 bytes"):
        service.change_password(user, "y" * 80)
    assert service.login(user.email, password).user.id == user.id


def test_list_users_delegates_pagination(service, make_user):
    for i in range(3):
        make_user(email=f"l{i}@example.com")
    assert len(service.list_users({}, page=1, per_page=2)) == 2
    assert len(service.list_users({}, page=2, per_page=2)) == 1


# ---------------------------------------------------------------------------
# Async variants
# ---------------------------------------------------------------------------


def test_alogin(service, make_user, password):
    user = make_user()
    result = asyncio.run(service.alogin(user.email, password))
    assert result.user.id == user.id


def test_alogin_propagates_unauthorized(service):
    with pytest.raises(UnauthorizedError):
        asyncio.run(service.alogin("missing@example.com", "pw"))


def test_aoauth_login(service):
    assert asyncio.run(service.aoauth_login(_profile())).services == {"google": "g-123"}


def test_arefresh(service, refresh_store, make_user):
    user = make_user()
    token = refresh_store.get_by_token(service.issue_refresh_token(user).token)
    assert asyncio.run(service.arefresh(user.email, token)).user.id == user.id


def test_build_auth_service_wires_shared_engine(settings, password):
    db_url = f"sqlite:///file:authcore_build_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    built = build_auth_service(settings.model_copy(update={"database_url": db_url}))
    try:
        assert built.refresh_store.engine is built.users.engine
        user = built.register("built@example.com", password)
        assert built.login(user.email, password).user.id == user.id
    finally:
        built.close()
