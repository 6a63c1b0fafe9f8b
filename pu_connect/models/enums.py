"""
Shared Enumerations for PU Connect Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so code like ``if role == 'admin'`` keeps working.
"""

from __future__ import annotations
from enum import StrEnum


class UserRole(StrEnum):
    """Access level attached to a profile.

    ``BUYER`` is the default for every new account.  Elevation happens
    only through admin tooling on the backend.
    """

    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    NEWS_PUBLISHER = "news_publisher"


class ProfileOrigin(StrEnum):
    """Where an in-memory profile came from.

    Only ``PERSISTED`` and ``CREATED`` reflect a row that exists in the
    remote store.  ``SYNTHESIZED`` profiles are built from identity
    metadata when the store cannot be reached; ``CACHED`` ones were
    restored from the local snapshot and are advisory.
    """

    PERSISTED = "persisted"
    CREATED = "created"
    SYNTHESIZED = "synthesized"
    CACHED = "cached"


class SessionState(StrEnum):
    """Lifecycle states of the session controller."""

    BOOTING = "booting"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    ERROR = "error"
