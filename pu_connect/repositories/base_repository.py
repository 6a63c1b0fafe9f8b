"""
Base Repository.

Provides shared infrastructure for repositories over the Supabase
PostgREST API:
- DatabaseManager reference
- Logger reference
- Store error taxonomy and classification of raw client errors
"""

from __future__ import annotations

from typing import Callable, Optional, TypeVar

from supabase import Client as SupabaseClient

from pu_connect.database import DatabaseManager
from pu_connect.logger import StructuredLogger

T = TypeVar("T")

# PostgREST / PostgreSQL error codes the repositories care about.
_NO_ROWS_CODE: str = "PGRST116"
_UNIQUE_VIOLATION_CODE: str = "23505"


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------

class StoreError(Exception):
    """Base class for failures reported by the remote profile store."""

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        self.message: str = message
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)


class ProfileNotFoundError(StoreError):
    """The query matched no row."""


class DuplicateProfileError(StoreError):
    """An insert collided with an existing primary or unique key."""


class StoreUnavailableError(StoreError):
    """Network, configuration or any other unclassified failure."""


# ---------------------------------------------------------------------------
# Repository base
# ---------------------------------------------------------------------------

class BaseRepository:
    """Base class for all repositories. Receives dependencies via __init__."""

    TABLE: str = ""

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    @property
    def supabase(self) -> SupabaseClient:
        """Returns the Supabase client for cloud operations."""
        return self._db.supabase

    def _execute(self, op: Callable[[], T], *, operation_name: str) -> T:
        """Run *op* and translate any failure into a :class:`StoreError`.

        Parameters
        ----------
        op:
            Zero-argument callable performing the PostgREST request.
        operation_name:
            Human-readable label for log messages, e.g.
            ``"get_by_id (profiles)"``.
        """
        try:
            return op()
        except StoreError:
            raise
        except Exception as exc:
            error = self._classify_error(exc)
            if isinstance(error, StoreUnavailableError):
                self._logger.warning(
                    "Profile store unavailable for %s: %s", operation_name, exc,
                )
            else:
                self._logger.debug(
                    "%s for %s: %s", type(error).__name__, operation_name, exc,
                )
            raise error from exc

    @staticmethod
    def _classify_error(exc: Exception) -> StoreError:
        """Map a raw client exception onto the store error taxonomy.

        ``postgrest.exceptions.APIError`` carries the PostgREST or
        PostgreSQL error code in ``.code``; the string form is checked as
        a fallback for clients that only expose a message.
        """
        code: str = str(getattr(exc, "code", "") or "")
        text: str = str(exc)

        if code == _NO_ROWS_CODE or _NO_ROWS_CODE in text:
            return ProfileNotFoundError("No matching row", original_error=exc)
        if code == _UNIQUE_VIOLATION_CODE or "duplicate key" in text.lower():
            return DuplicateProfileError("Row already exists", original_error=exc)
        return StoreUnavailableError(text or type(exc).__name__, original_error=exc)
