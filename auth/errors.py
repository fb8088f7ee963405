"""
auth/errors.py -- Typed error taxonomy for the authentication core.

Every failure the core surfaces is an AuthError subclass carrying:
  status_code -- the HTTP status the service layer should answer with
  code        -- stable machine-readable identifier
  message     -- human-readable text
  is_public   -- whether message may be returned verbatim to the caller
  errors      -- optional field-scoped details ({field, location, messages})

to_dict() renders the same envelope the API layer uses for HTTPException
details: {"error": {"code": ..., "message": ..., "details": [...]}}.
Non-public errors render an opaque message so storage or backend detail
never leaks past the core.

Layer rule: stdlib only.
"""

from __future__ import annotations

_OPAQUE_MESSAGE = "Internal server error"


class AuthError(Exception):
    """Base class for every error raised by auth/."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = _OPAQUE_MESSAGE
    default_public: bool = False

    def __init__(
        self,
        message: str | None = None,
        *,
        is_public: bool | None = None,
        errors: list[dict] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.is_public = self.default_public if is_public is None else is_public
        self.errors = errors or []
        super().__init__(self.message)

    @property
    def public_message(self) -> str:
        return self.message if self.is_public else _OPAQUE_MESSAGE

    def to_dict(self) -> dict:
        body: dict = {"code": self.code, "message": self.public_message}
        if self.is_public and self.errors:
            body["details"] = self.errors
        return {"error": body}


class BadRequestError(AuthError):
    status_code = 400
    code = "bad_request"
    default_message = "Bad request"
    default_public = True


class UnauthorizedError(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"
    default_public = True


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"
    default_public = True


class ConflictError(AuthError):
    """Uniqueness violation, scoped to the offending field."""

    status_code = 409
    code = "conflict"
    default_message = "Validation Error"
    default_public = True

    @classmethod
    def for_field(cls, field: str) -> ConflictError:
        return cls(
            errors=[
                {
                    "field": field,
                    "location": "body",
                    "messages": [f'"{field}" already exists'],
                }
            ]
        )

    @property
    def field(self) -> str | None:
        return self.errors[0]["field"] if self.errors else None


class InternalError(AuthError):
    """Hashing, signing or storage failure. Never public."""
