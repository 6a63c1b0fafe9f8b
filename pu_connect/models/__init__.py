from __future__ import annotations

"""
Data Models Package.

Re-exports the core models:
    from pu_connect.models import Profile, Identity, UserRole, SessionState
"""

from pu_connect.models.enums import ProfileOrigin, SessionState, UserRole
from pu_connect.models.identity import AuthSession, Identity, IdentityMetadata
from pu_connect.models.profile import Profile

__all__ = [
    "AuthSession",
    "Identity",
    "IdentityMetadata",
    "Profile",
    "ProfileOrigin",
    "SessionState",
    "UserRole",
]
