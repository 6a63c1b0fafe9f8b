"""
Authentication Pipeline Models.

Error classification, exceptions and state snapshots shared by the
Supabase auth adapter, the session controller and its callers.

Every failing public operation of the session controller raises one of
the exceptions below after recording its message as the shared session
``error``; callers are expected to catch them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel

from pu_connect.models.enums import SessionState
from pu_connect.models.identity import Identity
from pu_connect.models.profile import Profile


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """Exhaustive enumeration of authentication error categories."""

    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_ALREADY_EXISTS = "email_already_exists"
    EMAIL_NOT_CONFIRMED = "email_not_confirmed"
    SESSION_EXPIRED = "session_expired"
    RATE_LIMITED = "rate_limited"
    NETWORK_ERROR = "network_error"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_ERROR = "unknown_error"


# Keys are matched against the lower-cased GoTrue error code or message.
SUPABASE_ERROR_MAP: dict[str, tuple[AuthErrorCode, str]] = {
    "invalid_credentials": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password.",
    ),
    "invalid login credentials": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password.",
    ),
    "user_already_exists": (
        AuthErrorCode.EMAIL_ALREADY_EXISTS,
        "This email address is already registered. Please sign in instead.",
    ),
    "user already registered": (
        AuthErrorCode.EMAIL_ALREADY_EXISTS,
        "This email address is already registered. Please sign in instead.",
    ),
    "email_not_confirmed": (
        AuthErrorCode.EMAIL_NOT_CONFIRMED,
        "Please confirm your email address before signing in.",
    ),
    "session_not_found": (
        AuthErrorCode.SESSION_EXPIRED,
        "Your session has expired. Please sign in again.",
    ),
    "refresh_token_not_found": (
        AuthErrorCode.SESSION_EXPIRED,
        "Your session has expired. Please sign in again.",
    ),
    "over_request_rate_limit": (
        AuthErrorCode.RATE_LIMITED,
        "Too many attempts. Please wait a moment and try again.",
    ),
}

PROFILE_SETUP_FAILED_MESSAGE: str = (
    "Account created but profile setup failed. Please contact support."
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class AuthError(Exception):
    """A failure reported by (or on the way to) Supabase Auth.

    ``message`` is the server's text, surfaced verbatim to the user.
    ``friendly_message`` is the mapped wording for known codes.
    """

    def __init__(
        self,
        message: str,
        code: AuthErrorCode = AuthErrorCode.UNKNOWN_ERROR,
        original_error: Optional[Exception] = None,
    ) -> None:
        self.message: str = message
        self.code: AuthErrorCode = code
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)

    @property
    def friendly_message(self) -> str:
        for error_code, human_message in SUPABASE_ERROR_MAP.values():
            if error_code == self.code:
                return human_message
        return self.message


class ProfileSetupError(Exception):
    """Sign-up created the account but its profile row could not be written.

    The account is left in place; support has to finish the setup.
    """

    def __init__(
        self,
        identity_id: str,
        original_error: Optional[Exception] = None,
    ) -> None:
        self.identity_id: str = identity_id
        self.message: str = PROFILE_SETUP_FAILED_MESSAGE
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single client-side field validation check."""

    is_valid: bool
    error_message: Optional[str] = None


# ---------------------------------------------------------------------------
# Session snapshot
# ---------------------------------------------------------------------------

class SessionSnapshot(BaseModel):
    """Immutable copy of the session state exposed to the application.

    Attributes
    ----------
    state:
        Current controller state.
    user:
        The signed-in identity, or ``None``.
    profile:
        The resolved profile.  May be ``None`` while ``user`` is set when
        no role information could be obtained.
    error:
        Message of the most recent failed operation, or ``None``.
    sequence:
        Transition counter; increases with every accepted transition.
    """

    state: SessionState
    user: Optional[Identity] = None
    profile: Optional[Profile] = None
    error: Optional[str] = None
    sequence: int = 0

    model_config = {"frozen": True}

    @property
    def loading(self) -> bool:
        return self.state in (SessionState.BOOTING, SessionState.AUTHENTICATING)

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED and self.user is not None
