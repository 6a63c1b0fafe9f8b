"""
Profile Resolver.

Produces a best-effort ``Profile`` for a signed-in identity.  The
resolver never raises: a campus member who is logged in must always get
a usable session, even when the profile store is down.

Resolution order (first success wins):
    1. Fetch the persisted row by id and return it verbatim.  This is
       the only path guaranteed to carry the store's current role.
    2. If the store reported "no matching row" (and only then), create
       the missing row from identity metadata with role=buyer.  This is
       a write on a read path, kept as its own named step
       (:meth:`ProfileResolver._create_missing`).  A duplicate-key
       failure means a concurrent caller created it first; the existing
       row is re-fetched and returned.
    3. Otherwise synthesize an in-memory profile from the identity
       (``origin=synthesized``, never persisted).
    4. Without any identity, return ``None``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pu_connect.logger import StructuredLogger
from pu_connect.models.enums import ProfileOrigin, UserRole
from pu_connect.models.identity import Identity
from pu_connect.models.profile import Profile
from pu_connect.repositories.base_repository import (
    DuplicateProfileError,
    ProfileNotFoundError,
    StoreError,
)
from pu_connect.repositories.profile_repository import ProfileRepository
from pu_connect.services.auth_client import SupabaseAuthClient
from pu_connect.services.base_service import BaseService
from pu_connect.utils.audit import log_audit_event

SYNTHESIZED_FULL_NAME: str = "User"


class ProfileResolver(BaseService):
    """Resolves identities to profiles, healing missing rows on the way."""

    def __init__(
        self,
        repo: ProfileRepository,
        auth: SupabaseAuthClient,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._repo = repo
        self._auth = auth

    def resolve(
        self,
        identity_id: str,
        identity_hint: Optional[Identity] = None,
    ) -> Optional[Profile]:
        """Return the best profile obtainable for *identity_id*.

        Args:
            identity_id: Supabase UUID of the signed-in user.
            identity_hint: The identity, when the caller already has it;
                saves a round-trip to the auth server.

        Returns:
            A persisted, freshly created or synthesized ``Profile``;
            ``None`` only when no identity can be found at all.
        """
        identity: Optional[Identity] = identity_hint
        try:
            try:
                return self._repo.get_by_id(identity_id)
            except ProfileNotFoundError:
                self._logger.warning(
                    "No profile row for %s; attempting to create it.", identity_id,
                )
                identity = identity or self._fetch_identity()
                if identity is not None:
                    created = self._create_missing(identity)
                    if created is not None:
                        return created
            except StoreError as exc:
                self._logger.warning(
                    "Profile fetch failed for %s: %s. Using a synthesized profile.",
                    identity_id,
                    exc,
                )
                identity = identity or self._fetch_identity()
        except Exception as exc:
            self._logger.error(
                "Unexpected error resolving profile for %s: %s",
                identity_id,
                exc,
                exc_info=True,
            )
            identity = identity or self._fetch_identity()

        if identity is None:
            self._logger.warning("No identity available for %s; no profile.", identity_id)
            return None
        return self.synthesize(identity)

    @staticmethod
    def synthesize(identity: Identity) -> Profile:
        """Build an unpersisted profile from identity metadata alone."""
        now = datetime.now(timezone.utc)
        meta = identity.metadata
        return Profile(
            id=identity.id,
            email=identity.email or "",
            full_name=meta.full_name or SYNTHESIZED_FULL_NAME,
            student_id=meta.student_id or "",
            department=meta.department or "",
            faculty=meta.faculty or "",
            phone=meta.phone or "",
            role=UserRole.BUYER,
            is_active=True,
            is_online=True,
            last_seen=now,
            created_at=now,
            updated_at=now,
            origin=ProfileOrigin.SYNTHESIZED,
        )

    @staticmethod
    def seed_profile(identity: Identity) -> Profile:
        """Return the row written for a new identity: role=buyer, active."""
        now = datetime.now(timezone.utc)
        meta = identity.metadata
        return Profile(
            id=identity.id,
            email=identity.email or "",
            full_name=meta.full_name or "",
            student_id=meta.student_id or "",
            department=meta.department or "",
            faculty=meta.faculty or "",
            phone=meta.phone or "",
            role=UserRole.BUYER,
            is_active=True,
            created_at=now,
            updated_at=now,
        )

    # ------------------------------------------------------------------
    # Private implementation
    # ------------------------------------------------------------------

    def _create_missing(self, identity: Identity) -> Optional[Profile]:
        """Insert the profile row for *identity*; ``None`` when that fails.

        Idempotent under concurrent callers: a duplicate key converges on
        the row the other caller wrote.
        """
        try:
            created = self._repo.insert(self.seed_profile(identity))
        except DuplicateProfileError:
            self._logger.info(
                "Profile for %s was created concurrently; re-fetching.", identity.id,
            )
            try:
                return self._repo.get_by_id(identity.id)
            except StoreError as exc:
                self._logger.warning(
                    "Re-fetch after concurrent creation failed for %s: %s",
                    identity.id,
                    exc,
                )
                return None
        except StoreError as exc:
            self._logger.warning(
                "Could not create missing profile for %s: %s", identity.id, exc,
            )
            return None

        log_audit_event(
            logger=self._logger,
            action="PROFILE_SELF_HEAL",
            entity_type="Profile",
            entity_id=identity.id,
            user_id=identity.id,
            details={"email": identity.email, "role": str(UserRole.BUYER)},
        )
        return created

    def _fetch_identity(self) -> Optional[Identity]:
        """Ask the auth server for the current identity; ``None`` on failure."""
        try:
            return self._auth.get_identity()
        except Exception as exc:
            self._logger.warning("Could not fetch identity from auth server: %s", exc)
            return None
