"""
Supabase Auth Adapter.

Thin boundary over ``supabase.auth`` (GoTrue): the remote authority that
owns credentials, sessions and tokens and pushes auth-state
notifications.  The adapter converts Supabase objects into the typed
``Identity`` / ``AuthSession`` models and every failure into an
:class:`~pu_connect.models.auth_models.AuthError` carrying a classified
``AuthErrorCode``.

Nothing here holds session state; that belongs to the session
controller.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from pu_connect.database import DatabaseManager
from pu_connect.logger import StructuredLogger
from pu_connect.models.auth_models import (
    AuthError,
    AuthErrorCode,
    SUPABASE_ERROR_MAP,
)
from pu_connect.models.identity import AuthSession, Identity, IdentityMetadata
from pu_connect.services.base_service import BaseService

AuthChangeCallback = Callable[[Optional[AuthSession]], None]


class AuthSubscription:
    """Handle returned by :meth:`SupabaseAuthClient.subscribe`.

    ``unsubscribe()`` is idempotent.
    """

    def __init__(self, subscription: Any, logger: StructuredLogger) -> None:
        self._subscription = subscription
        self._logger = logger
        self._active: bool = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        try:
            self._subscription.unsubscribe()
        except Exception as exc:
            self._logger.warning("Auth subscription unsubscribe failed: %s", exc)


class SupabaseAuthClient(BaseService):
    """Typed facade over ``supabase.auth``.

    Parameters
    ----------
    db:
        Database manager exposing the Supabase client.
    logger:
        Structured JSON logger.
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._db: DatabaseManager = db

    # ==================================================================
    # Session queries
    # ==================================================================

    def get_current_session(self) -> Optional[AuthSession]:
        """Return the persisted session, refreshing it if needed, or ``None``."""
        try:
            session = self._db.supabase.auth.get_session()
        except Exception as exc:
            raise self._classify_error(exc, "get_session") from exc
        if session is None or getattr(session, "user", None) is None:
            return None
        return AuthSession.from_supabase_session(session)

    def get_identity(self) -> Optional[Identity]:
        """Fetch the signed-in user fresh from the auth server, or ``None``."""
        try:
            response = self._db.supabase.auth.get_user()
        except Exception as exc:
            raise self._classify_error(exc, "get_user") from exc
        user = getattr(response, "user", None) if response is not None else None
        if user is None:
            return None
        return Identity.from_supabase_user(user)

    # ==================================================================
    # Credential flows
    # ==================================================================

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """Exchange credentials for a session.

        Raises:
            AuthError: Bad credentials, unconfirmed email, network failure.
        """
        try:
            response = self._db.supabase.auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
        except Exception as exc:
            raise self._classify_error(exc, "sign_in") from exc

        if response.session is None or response.user is None:
            raise AuthError(
                "Sign-in returned no session.", AuthErrorCode.UNKNOWN_ERROR,
            )
        self._logger.info(
            "Signed in: %s",
            email,
            extra={"event": "LOGIN", "email": email, "user_id": str(response.user.id)},
        )
        return AuthSession.from_supabase_session(response.session)

    def sign_up(
        self,
        email: str,
        password: str,
        metadata: IdentityMetadata,
    ) -> tuple[Identity, Optional[AuthSession]]:
        """Create an account with *metadata* attached as ``user_metadata``.

        Returns the new identity and, when email confirmation is off,
        the session that came with it.

        Raises:
            AuthError: Duplicate registration, weak password, network failure.
        """
        try:
            response = self._db.supabase.auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": metadata.to_signup_data()},
            })
        except Exception as exc:
            raise self._classify_error(exc, "sign_up") from exc

        if response.user is None:
            raise AuthError(
                "Registration failed: No user returned",
                AuthErrorCode.UNKNOWN_ERROR,
            )

        identity = Identity.from_supabase_user(response.user)
        session: Optional[AuthSession] = None
        if response.session is not None:
            session = AuthSession.from_supabase_session(response.session)

        self._logger.info(
            "Account registered: %s",
            email,
            extra={"event": "REGISTER", "email": email, "user_id": identity.id},
        )
        return identity, session

    def sign_out(self) -> None:
        """Revoke the current session on the server.

        Raises:
            AuthError: The server could not be reached or refused.
        """
        try:
            self._db.supabase.auth.sign_out()
        except Exception as exc:
            raise self._classify_error(exc, "sign_out") from exc

    def request_password_reset(self, email: str, return_url: str) -> None:
        """Send a password-reset email whose link lands on *return_url*.

        Raises:
            AuthError: The request could not be delivered.
        """
        try:
            self._db.supabase.auth.reset_password_for_email(
                email, {"redirect_to": return_url},
            )
        except Exception as exc:
            raise self._classify_error(exc, "reset_password") from exc
        self._logger.info(
            "Password reset requested for %s.", email,
            extra={"event": "PASSWORD_RESET_REQUESTED", "email": email},
        )

    # ==================================================================
    # Notifications
    # ==================================================================

    def subscribe(self, on_change: AuthChangeCallback) -> AuthSubscription:
        """Deliver every auth-state change to *on_change*.

        The callback receives the new ``AuthSession`` when a session is
        established or refreshed, and ``None`` when it ends.

        Raises:
            AuthError: The Supabase client is unavailable.
        """
        def _listener(event: Any, session: Any) -> None:
            self._logger.debug("Auth state change: %s", event)
            if session is not None and getattr(session, "user", None) is not None:
                on_change(AuthSession.from_supabase_session(session))
            else:
                on_change(None)

        try:
            subscription = self._db.supabase.auth.on_auth_state_change(_listener)
        except Exception as exc:
            raise self._classify_error(exc, "subscribe") from exc
        return AuthSubscription(subscription, self._logger)

    # ==================================================================
    # Error classification
    # ==================================================================

    def _classify_error(self, exc: Exception, operation: str) -> AuthError:
        """Map a Supabase or network exception to an ``AuthError``.

        The server's message is kept verbatim; only the code is derived
        from :data:`SUPABASE_ERROR_MAP`.
        """
        if isinstance(exc, RuntimeError):
            # DatabaseManager.supabase raises RuntimeError when unconfigured.
            return AuthError(
                "Authentication service is not configured.",
                AuthErrorCode.NETWORK_ERROR,
                original_error=exc,
            )

        if isinstance(exc, (ConnectionError, TimeoutError)):
            self._logger.warning(
                "Network error during %s: %s", operation, exc,
                extra={"event": "AUTH_NETWORK_ERROR"},
            )
            return AuthError(
                "Cannot reach the server. Check your internet connection.",
                AuthErrorCode.NETWORK_ERROR,
                original_error=exc,
            )

        message: str = str(getattr(exc, "message", "") or exc) or "Authentication failed"
        haystack: str = f"{getattr(exc, 'code', '') or ''} {message}".lower()

        for code_key, (error_code, _human_message) in SUPABASE_ERROR_MAP.items():
            if code_key in haystack:
                self._logger.warning(
                    "Auth error during %s (%s): %s", operation, code_key, message,
                    extra={"event": "AUTH_FAILED", "error_code": code_key},
                )
                return AuthError(message, error_code, original_error=exc)

        self._logger.warning(
            "Unknown auth error during %s: %s", operation, message,
            extra={"event": "AUTH_FAILED", "error_code": "unknown"},
        )
        return AuthError(message, AuthErrorCode.UNKNOWN_ERROR, original_error=exc)
