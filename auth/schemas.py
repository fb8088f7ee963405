"""
auth/schemas.py -- Pydantic v2 validation models for store queries.

These validate caller-supplied query parameters before they reach SQL. They
are intentionally separate from the dataclasses in auth/models.py, which own
the domain shape.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UserListQuery(BaseModel):
    """Filters and pagination for UserStore.list_users().

    Equality filters apply only when the value is not None. page is 1-based;
    offset = per_page * (page - 1).
    """

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=30, ge=1)

    @property
    def offset(self) -> int:
        return self.per_page * (self.page - 1)

    def filters(self) -> dict[str, str]:
        return {k: v for k, v in self.model_dump(include={"name", "email", "role"}).items() if v is not None}
