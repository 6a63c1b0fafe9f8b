"""
Repository Layer Package.

Provides data-access abstractions over the Supabase PostgREST API.
Services never call ``db.supabase.table(...)`` directly.

Usage:
    from pu_connect.repositories.profile_repository import ProfileRepository
"""

from pu_connect.repositories.base_repository import (
    BaseRepository,
    DuplicateProfileError,
    ProfileNotFoundError,
    StoreError,
    StoreUnavailableError,
)
from pu_connect.repositories.profile_repository import ProfileRepository

__all__ = [
    "BaseRepository",
    "DuplicateProfileError",
    "ProfileNotFoundError",
    "ProfileRepository",
    "StoreError",
    "StoreUnavailableError",
]
