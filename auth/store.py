"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and RefreshTokenStore are the repositories; _row_to_user and
_row_to_refresh_token are the mappers. The service never touches SQL.

Error translation:
  Storage errors never leave this module raw. A uniqueness violation becomes
  ConflictError scoped to the offending field ("email" for users). A missing
  required value becomes BadRequestError. Anything else from SQLAlchemy is
  logged with full detail and re-raised as an opaque InternalError. The
  UNIQUE(email) constraint is the only concurrency guard: callers must not
  check-then-create, they create and handle ConflictError.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: authcore.db at the project root unless DATABASE_URL is set.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import BadRequestError, ConflictError, InternalError, NotFoundError
from auth.models import ROLES, RefreshToken, User, as_utc
from auth.schemas import UserListQuery
from core.config import DEFAULT_DB_URL

logger = logging.getLogger("authcore.auth.store")

# Largest value a 64-bit INTEGER primary key can hold
_MAX_ID = 2**63 - 1

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("hashed_password", Text),
    Column("name", String(255)),
    Column("picture", Text),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("created_at", String(32), nullable=False, index=True),
    UniqueConstraint("email", name="uq_users_email"),
)

# One row per (user, provider). The second constraint stops two users from
# claiming the same external identity.
_user_services = Table(
    "user_services",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("provider", String(30), nullable=False),
    Column("external_id", String(255), nullable=False),
    PrimaryKeyConstraint("user_id", "provider"),
    UniqueConstraint("provider", "external_id", name="uq_user_services_identity"),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(255), nullable=False, unique=True, index=True),
    Column("user_id", Integer, nullable=False),
    Column("user_email", String(255), nullable=False),
    Column("expires", String(32), nullable=False),  # ISO 8601, UTC
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_auth_engine(db_url: str = DEFAULT_DB_URL) -> Engine:
    """Create an engine for db_url and make sure the auth tables exist."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    # Fixed-width so created_at sorts correctly as text
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Translate SQLAlchemy errors raised inside the block into AuthErrors."""
    try:
        yield
    except IntegrityError as exc:
        # SQLite: "UNIQUE constraint failed: users.email"
        # Postgres: 'duplicate key value violates unique constraint "uq_users_email"'
        message = str(exc.orig)
        if "uq_users_email" in message or ("UNIQUE" in message and "users.email" in message):
            raise ConflictError.for_field("email") from exc
        if "uq_user_services_identity" in message or ("UNIQUE" in message and "external_id" in message):
            raise ConflictError.for_field("services") from exc
        if "NOT NULL" in message or "not-null" in message:
            logger.warning("Missing required value during %s: %s", action, message)
            raise BadRequestError("A required field is missing") from exc
        logger.exception("Integrity error during %s", action)
        raise InternalError() from exc
    except SQLAlchemyError as exc:
        logger.exception("Storage failure during %s", action)
        raise InternalError() from exc


class _Store:
    """Engine ownership shared by both repositories.

    Pass engine= to share one pool between stores; otherwise the store owns
    an engine built from db_url and disposes it on close().
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL, engine: Engine | None = None) -> None:
        self._owns_engine = engine is None
        self.engine: Engine = engine if engine is not None else create_auth_engine(db_url)

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore(_Store):
    """Repository for User records and their linked provider identities.

    Usage:
        store = UserStore()
        user = store.create(User(email="a@example.com", hashed_password=hasher.hash("secret")))
        store.find_by_email("a@example.com")
        store.close()
    """

    def get_by_id(self, user_id: int | str) -> User:
        """Return the user with this id.

        Raises NotFoundError if user_id is not an integer id or no record
        exists. The two cases are deliberately indistinguishable.
        """
        try:
            pk = int(user_id)
        except (TypeError, ValueError):
            raise NotFoundError("User does not exist") from None
        if not 0 < pk <= _MAX_ID:
            raise NotFoundError("User does not exist")
        with _storage_errors("get_by_id"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == pk)).fetchone()
            if row is None:
                raise NotFoundError("User does not exist")
            return _row_to_user(row, self._services_for(conn, [row.id]).get(row.id))

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with _storage_errors("find_by_email"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._services_for(conn, [row.id]).get(row.id))

    def find_by_service_or_email(self, provider: str, external_id: str, email: str | None) -> User | None:
        """Find the user linked to (provider, external_id), else the one owning email.

        A linked identity wins over an email match when they point at
        different users.
        """
        with _storage_errors("find_by_service_or_email"), self.engine.connect() as conn:
            row = conn.execute(
                select(_users)
                .select_from(_users.join(_user_services))
                .where((_user_services.c.provider == provider) & (_user_services.c.external_id == external_id))
            ).fetchone()
            if row is None and email:
                row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._services_for(conn, [row.id]).get(row.id))

    def create(self, user: User) -> User:
        """Insert user and return it with id and created_at assigned.

        hashed_password must already be hashed; the store never hashes.
        Raises ConflictError (field "email") if the email is taken, and
        BadRequestError for an unknown role.
        """
        _check_role(user.role)
        if not user.email:
            raise BadRequestError(
                "Validation Error",
                errors=[{"field": "email", "location": "body", "messages": ['"email" is required']}],
            )
        created_at = user.created_at or _now_iso()
        with _storage_errors("create"), self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    hashed_password=user.hashed_password,
                    name=user.name,
                    picture=user.picture,
                    role=user.role,
                    created_at=created_at,
                )
            )
            user_id = result.inserted_primary_key[0]
            _write_services(conn, user_id, user.services)
        logger.info("Created user %s", user_id)
        return User(
            id=user_id,
            email=user.email,
            hashed_password=user.hashed_password,
            name=user.name,
            picture=user.picture,
            role=user.role,
            services=dict(user.services),
            created_at=created_at,
        )

    def update(self, user: User) -> User:
        """Persist the mutable fields of an existing user.

        Writes email, hashed_password, name, picture, role and replaces the
        services mapping in one transaction. Never hashes: a caller changing
        the password passes an already-hashed value.
        """
        _check_role(user.role)
        if user.id is None:
            raise NotFoundError("User does not exist")
        with _storage_errors("update"), self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user.id)
                .values(
                    email=user.email,
                    hashed_password=user.hashed_password,
                    name=user.name,
                    picture=user.picture,
                    role=user.role,
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("User does not exist")
            conn.execute(_user_services.delete().where(_user_services.c.user_id == user.id))
            _write_services(conn, user.id, user.services)
        return user

    def list_users(self, filters: dict | None = None, page: int = 1, per_page: int = 30) -> list[User]:
        """Return users matching filters, newest first, one page at a time.

        filters may contain name, email and role; None values are ignored.
        page and per_page must be positive integers (BadRequestError otherwise).
        """
        try:
            query = UserListQuery(**{**(filters or {}), "page": page, "per_page": per_page})
        except ValidationError as exc:
            raise BadRequestError(
                "Validation Error",
                errors=[
                    {"field": ".".join(str(p) for p in err["loc"]), "location": "query", "messages": [err["msg"]]}
                    for err in exc.errors()
                ],
            ) from exc

        stmt = _users.select()
        for column, value in query.filters().items():
            stmt = stmt.where(_users.c[column] == value)
        stmt = stmt.order_by(_users.c.created_at.desc(), _users.c.id.desc()).offset(query.offset).limit(query.per_page)

        with _storage_errors("list_users"), self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
            services = self._services_for(conn, [r.id for r in rows])
        return [_row_to_user(r, services.get(r.id)) for r in rows]

    @staticmethod
    def _services_for(conn, user_ids: list[int]) -> dict[int, dict[str, str]]:
        if not user_ids:
            return {}
        rows = conn.execute(_user_services.select().where(_user_services.c.user_id.in_(user_ids))).fetchall()
        services: dict[int, dict[str, str]] = {}
        for r in rows:
            services.setdefault(r.user_id, {})[r.provider] = r.external_id
        return services


class RefreshTokenStore(_Store):
    """Repository for issued refresh tokens, indexed by token string."""

    def insert(self, token: RefreshToken) -> RefreshToken:
        with _storage_errors("insert refresh token"), self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    token=token.token,
                    user_id=token.user_id,
                    user_email=token.user_email,
                    expires=as_utc(token.expires).isoformat(),
                )
            )
            conn.commit()
        token.id = result.inserted_primary_key[0]
        return token

    def get_by_token(self, token: str) -> RefreshToken | None:
        """Reconstruct a refresh object by its token string. O(1) via index."""
        with _storage_errors("get refresh token"), self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete(self, token: str) -> bool:
        """Remove a token. Returns True if a row was deleted."""
        with _storage_errors("delete refresh token"), self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _check_role(role: str) -> None:
    if role not in ROLES:
        raise BadRequestError(
            "Validation Error",
            errors=[{"field": "role", "location": "body", "messages": [f'"role" must be one of {list(ROLES)}']}],
        )


def _write_services(conn, user_id: int, services: dict[str, str]) -> None:
    if services:
        conn.execute(
            _user_services.insert(),
            [{"user_id": user_id, "provider": p, "external_id": ext} for p, ext in services.items()],
        )


def _row_to_user(row, services: dict[str, str] | None = None) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        name=row.name,
        picture=row.picture,
        role=row.role,
        services=services or {},
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        user_email=row.user_email,
        expires=as_utc(datetime.fromisoformat(row.expires)),
    )
