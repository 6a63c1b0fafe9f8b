"""
Identity Models.

Typed views of the records owned by Supabase Auth: the account
(``Identity``), its free-form ``user_metadata`` (``IdentityMetadata``),
and an active login (``AuthSession``).  These are read-only to the
client.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field


class IdentityMetadata(BaseModel):
    """Registration details attached to an account at sign-up.

    Every field is optional because accounts created outside the
    registration form (e.g. the admin bootstrap) carry only a name.
    Unknown metadata keys are dropped.
    """

    full_name: Optional[str] = None
    student_id: Optional[str] = None
    department: Optional[str] = None
    faculty: Optional[str] = None
    phone: Optional[str] = None

    model_config = {"extra": "ignore"}

    def to_signup_data(self) -> dict[str, str]:
        """Return the ``options.data`` payload for ``auth.sign_up``."""
        return self.model_dump(exclude_none=True)


class Identity(BaseModel):
    """An account record owned by Supabase Auth."""

    id: str
    email: str = ""
    metadata: IdentityMetadata = Field(default_factory=IdentityMetadata)

    model_config = {"frozen": True}

    @classmethod
    def from_supabase_user(cls, user: Any) -> "Identity":
        """Build an ``Identity`` from a ``supabase_auth`` ``User`` object."""
        raw_metadata: Optional[Mapping[str, Any]] = getattr(user, "user_metadata", None)
        return cls(
            id=str(user.id),
            email=getattr(user, "email", None) or "",
            metadata=IdentityMetadata.model_validate(dict(raw_metadata or {})),
        )


class AuthSession(BaseModel):
    """An established login as reported by Supabase Auth."""

    identity: Identity
    access_token: str = ""
    refresh_token: str = ""
    expires_at: Optional[int] = None

    @classmethod
    def from_supabase_session(cls, session: Any) -> "AuthSession":
        """Build an ``AuthSession`` from a ``supabase_auth`` ``Session`` object."""
        return cls(
            identity=Identity.from_supabase_user(session.user),
            access_token=getattr(session, "access_token", "") or "",
            refresh_token=getattr(session, "refresh_token", "") or "",
            expires_at=getattr(session, "expires_at", None),
        )
