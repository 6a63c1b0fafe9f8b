"""
Profile Model.

Pydantic model for a row of the Supabase ``profiles`` table: the
application's view of a campus member, carrying their role.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from pu_connect.models.enums import ProfileOrigin, UserRole


class Profile(BaseModel):
    """Represents a user profile.

    ``id`` always equals the owning identity's id and never changes
    after creation.  ``origin`` is bookkeeping for the client only: it is
    excluded from every dump, so it never reaches the store or the local
    cache.
    """

    id: str  # Supabase auth UUID
    email: str = ""
    full_name: str = ""
    student_id: Optional[str] = None
    department: Optional[str] = None
    faculty: Optional[str] = None
    phone: Optional[str] = None
    role: UserRole = UserRole.BUYER
    is_active: bool = True
    is_online: bool = False
    last_seen: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    origin: ProfileOrigin = Field(default=ProfileOrigin.PERSISTED, exclude=True)

    model_config = {"from_attributes": True, "extra": "ignore"}

    @property
    def is_persisted(self) -> bool:
        """``True`` when this profile mirrors a row in the remote store."""
        return self.origin in (ProfileOrigin.PERSISTED, ProfileOrigin.CREATED)

    def to_row(self) -> dict[str, object]:
        """Serialise for a PostgREST insert (timestamps as ISO strings)."""
        return self.model_dump(mode="json", exclude_none=True)
