"""
Profile Repository.

Handles all access to the Supabase ``profiles`` table: one row per
Supabase Auth identity, keyed by the identity's UUID and unique by email.

Every method raises a :class:`~pu_connect.repositories.base_repository.StoreError`
subclass on failure; deciding whether a failure is fatal belongs to the
caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pu_connect.database import DatabaseManager
from pu_connect.logger import StructuredLogger
from pu_connect.models.enums import ProfileOrigin
from pu_connect.models.profile import Profile
from pu_connect.repositories.base_repository import (
    BaseRepository,
    StoreUnavailableError,
)

PatchValue = Union[str, bool, int, None]


class ProfileRepository(BaseRepository):
    """Data access layer for ``Profile`` rows.

    **No ``delete()`` method.**  Profiles are deactivated through
    ``is_active`` by backend admin tooling, never removed by the client.
    """

    TABLE = "profiles"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    def get_by_id(self, profile_id: str) -> Profile:
        """Fetch a profile by primary key.

        Raises:
            ProfileNotFoundError: No row has this id.
            StoreUnavailableError: Any other failure.
        """
        def _query() -> Profile:
            response = (
                self.supabase.table(self.TABLE)
                .select("*")
                .eq("id", profile_id)
                .single()
                .execute()
            )
            return Profile(**response.data)

        return self._execute(_query, operation_name="get_by_id (profiles)")

    def find_by_email(self, email: str) -> Profile:
        """Fetch a profile by its unique email address.

        Args:
            email: The email address (case-insensitive lookup).

        Raises:
            ProfileNotFoundError: No row has this email.
            StoreUnavailableError: Any other failure.
        """
        normalized_email = email.strip().lower()

        def _query() -> Profile:
            response = (
                self.supabase.table(self.TABLE)
                .select("*")
                .eq("email", normalized_email)
                .single()
                .execute()
            )
            return Profile(**response.data)

        return self._execute(_query, operation_name="find_by_email (profiles)")

    def insert(self, profile: Profile) -> Profile:
        """Insert a new profile row and return it as stored.

        Raises:
            DuplicateProfileError: A row with this id or email exists.
            StoreUnavailableError: Any other failure.
        """
        def _query() -> Profile:
            response = (
                self.supabase.table(self.TABLE)
                .insert(profile.to_row())
                .execute()
            )
            if not response.data:
                raise StoreUnavailableError(
                    f"Insert of profile {profile.id} returned no row"
                )
            return Profile(**response.data[0], origin=ProfileOrigin.CREATED)

        created = self._execute(_query, operation_name="insert (profiles)")
        self._logger.info("Profile inserted: %s", created.id)
        return created

    def update_by_id(self, profile_id: str, patch: dict[str, PatchValue]) -> None:
        """Apply *patch* to the row with *profile_id* as one update.

        Raises:
            StoreUnavailableError: The update could not be delivered.
        """
        def _query() -> None:
            (
                self.supabase.table(self.TABLE)
                .update(patch)
                .eq("id", profile_id)
                .execute()
            )

        self._execute(_query, operation_name="update_by_id (profiles)")

    def set_presence(self, profile_id: str, is_online: bool, seen_at: datetime) -> None:
        """Write the online flag and last-seen timestamp together."""
        self.update_by_id(
            profile_id,
            {"is_online": is_online, "last_seen": seen_at.isoformat()},
        )
