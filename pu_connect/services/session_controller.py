"""
Session Controller.

The state machine that owns the client's session (``user``, ``profile``,
``loading``, ``error``) and reconciles three independent truth sources
into it:

- the encrypted local cache (advisory profile snapshot, read at boot);
- Supabase Auth (current session plus pushed auth-state notifications);
- the Supabase ``profiles`` row (via :class:`ProfileResolver`).

States::

    BOOTING ──no session──────────────▶ UNAUTHENTICATED
       │                                      ▲
       └─session──▶ AUTHENTICATING ──▶ AUTHENTICATED(profile | None)
                          ▲                   │
                          └──notification─────┘   (session ended → UNAUTHENTICATED)

Sign-in does not touch the state directly: Supabase emits a notification
for the new session and the notification path performs the transition,
so there is one route into ``AUTHENTICATED``.  Results of slow profile
resolutions are discarded when a newer transition has started (see
:class:`~pu_connect.auth.SessionManager`).

Every public operation clears ``error`` when it starts, records the
message on failure and re-raises.
"""

from __future__ import annotations

import re
from types import TracebackType
from typing import Optional, Type

from pu_connect.auth import SessionManager
from pu_connect.config import AppConfig
from pu_connect.logger import StructuredLogger
from pu_connect.models.auth_models import (
    AuthError,
    AuthErrorCode,
    ProfileSetupError,
    SessionSnapshot,
    ValidationResult,
)
from pu_connect.models.enums import SessionState
from pu_connect.models.identity import AuthSession, Identity, IdentityMetadata
from pu_connect.models.profile import Profile
from pu_connect.repositories.base_repository import DuplicateProfileError, StoreError
from pu_connect.repositories.profile_repository import ProfileRepository
from pu_connect.services.auth_client import AuthSubscription, SupabaseAuthClient
from pu_connect.services.base_service import BaseService
from pu_connect.services.local_cache import LocalCacheService
from pu_connect.services.presence import PresenceReporter
from pu_connect.services.profile_resolver import ProfileResolver
from pu_connect.services.sms_service import SmsService
from pu_connect.utils.audit import log_audit_event


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_EMAIL_RE: re.Pattern[str] = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

_MIN_PASSWORD_LENGTH: int = 6

BOOT_FAILED_MESSAGE: str = "Failed to initialize authentication"


class SessionController(BaseService):
    """Owns the session lifecycle of one client process.

    Parameters
    ----------
    session:
        Shared session state holder.
    auth:
        Supabase Auth adapter.
    repo:
        Profile repository, used for the explicit sign-up insert.
    resolver:
        Profile resolver.
    presence:
        Presence reporter (heartbeat + lifecycle writes).
    cache:
        Encrypted local cache holding the profile snapshot.
    messaging:
        Messaging collaborator for the welcome SMS.
    config:
        Application configuration.
    logger:
        Structured JSON logger.
    """

    def __init__(
        self,
        session: SessionManager,
        auth: SupabaseAuthClient,
        repo: ProfileRepository,
        resolver: ProfileResolver,
        presence: PresenceReporter,
        cache: LocalCacheService,
        messaging: SmsService,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._session: SessionManager = session
        self._auth: SupabaseAuthClient = auth
        self._repo: ProfileRepository = repo
        self._resolver: ProfileResolver = resolver
        self._presence: PresenceReporter = presence
        self._cache: LocalCacheService = cache
        self._messaging: SmsService = messaging
        self._config: AppConfig = config
        self._subscription: Optional[AuthSubscription] = None
        self._closed: bool = False

    # ==================================================================
    # Read access
    # ==================================================================

    @property
    def session(self) -> SessionManager:
        return self._session

    def snapshot(self) -> SessionSnapshot:
        """Return an immutable copy of the current session."""
        return self._session.snapshot()

    # ==================================================================
    # Validation helpers
    # ==================================================================

    @staticmethod
    def normalize_email(email: str) -> str:
        """Normalise an email address: strip whitespace and lowercase."""
        return email.strip().lower()

    @staticmethod
    def validate_email(email: str) -> ValidationResult:
        """Validate an email address against a simplified RFC 5322 regex."""
        if not email or not email.strip():
            return ValidationResult(
                is_valid=False,
                error_message="Email address is required.",
            )
        if not _EMAIL_RE.match(email.strip()):
            return ValidationResult(
                is_valid=False,
                error_message="Please enter a valid email address.",
            )
        return ValidationResult(is_valid=True)

    @staticmethod
    def validate_password(password: str) -> ValidationResult:
        """Enforce the registration password policy (minimum 6 characters)."""
        if len(password) < _MIN_PASSWORD_LENGTH:
            return ValidationResult(
                is_valid=False,
                error_message=(
                    f"Password must be at least {_MIN_PASSWORD_LENGTH} characters"
                ),
            )
        return ValidationResult(is_valid=True)

    # ==================================================================
    # Lifecycle
    # ==================================================================

    def start(self) -> SessionSnapshot:
        """Subscribe to auth notifications, then boot.

        Subscribing first means a notification arriving during boot is
        never lost; the sequence counter decides which result wins.
        """
        try:
            self._subscription = self._auth.subscribe(self._on_auth_change)
        except AuthError as exc:
            self._logger.error("Could not subscribe to auth notifications: %s", exc)
        return self.boot()

    def boot(self) -> SessionSnapshot:
        """Restore the session: cached snapshot first, then Supabase.

        The cached profile is shown while Supabase answers but is never
        trusted once it has.
        """
        ticket = self._session.begin(SessionState.BOOTING)
        self._session.clear_error()

        cached: Optional[Profile] = self._cache.load_profile()
        if cached is not None and self._session.is_current(ticket):
            self._session.set_profile(cached)
            self._logger.info("Showing cached profile for %s while booting.", cached.id)

        try:
            auth_session = self._auth.get_current_session()
        except Exception as exc:
            self._logger.error("Auth initialization error: %s", exc)
            self._session.set_error(BOOT_FAILED_MESSAGE)
            self._session.commit(ticket, SessionState.ERROR)
            return self._session.snapshot()

        if auth_session is None:
            if self._session.commit(
                ticket, SessionState.UNAUTHENTICATED, user=None, profile=None,
            ):
                self._cache.evict_profile()
            return self._session.snapshot()

        identity = auth_session.identity
        if self._session.commit(ticket, SessionState.AUTHENTICATING, user=identity):
            self._establish(identity, ticket)
        return self._session.snapshot()

    def close(self) -> None:
        """Tear down: stop heartbeat, unsubscribe, report offline.

        Idempotent.  Called from ``__exit__`` and registered with
        ``atexit`` by the entry point so every exit path runs it.
        """
        if self._closed:
            return
        self._closed = True

        user = self._session.user
        self._presence.stop_heartbeat()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if user is not None:
            self._presence.report(user.id, False)
        self._logger.info("Session controller closed.")

    def __enter__(self) -> "SessionController":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()

    # ==================================================================
    # Auth notifications
    # ==================================================================

    def _on_auth_change(self, auth_session: Optional[AuthSession]) -> None:
        """Handle a session established/refreshed/ended notification.

        A present session is always re-resolved, even when a profile is
        already held, so role changes made on the server propagate.
        """
        if self._closed:
            return
        try:
            if auth_session is None:
                self._end_session()
                return
            identity = auth_session.identity
            ticket = self._session.begin(SessionState.AUTHENTICATING, user=identity)
            self._establish(identity, ticket)
        except Exception as exc:
            self._logger.error(
                "Failed to apply auth state change: %s", exc, exc_info=True,
            )
            self._session.set_error(str(exc) or "Failed to update session")

    def _establish(self, identity: Identity, ticket: int) -> Optional[Profile]:
        """Resolve the profile for *identity* and enter ``AUTHENTICATED``.

        Nothing is written if a newer transition started meanwhile.  The
        follow-up writes re-check the ticket one by one, since a
        notification may end the session while they are in flight.
        """
        profile = self._resolver.resolve(identity.id, identity)

        if not self._session.commit(ticket, SessionState.AUTHENTICATED, profile=profile):
            self._logger.info(
                "Discarding stale profile resolution for %s (ticket %d).",
                identity.id,
                ticket,
            )
            return None

        if profile is None:
            self._logger.warning(
                "Signed in as %s without profile information.", identity.id,
            )
        elif self._session.is_current(ticket):
            self._cache.store_profile(profile)
            if not self._owns_session(identity.id):
                self._cache.evict_profile()
            else:
                self._presence.report(identity.id, True)

        if not self._session.is_current(ticket):
            self._logger.info(
                "Session for %s was superseded before the heartbeat started.", identity.id,
            )
            return None
        self._presence.start_heartbeat(identity.id)
        # _end_session clears before stopping, so one of the two sides sees the other.
        if not self._owns_session(identity.id):
            self._presence.stop_heartbeat(identity.id)
        return profile

    def _owns_session(self, identity_id: str) -> bool:
        user = self._session.user
        return user is not None and user.id == identity_id

    def _end_session(self) -> None:
        self._session.clear()
        self._presence.stop_heartbeat()
        self._cache.evict_profile()
        self._logger.info("Session ended.")

    # ==================================================================
    # Sign in
    # ==================================================================

    def sign_in(self, email: str, password: str) -> AuthSession:
        """Authenticate with email and password.

        The ``AUTHENTICATED`` transition arrives through the auth
        notification Supabase emits for the new session.

        Raises:
            AuthError: Credentials rejected or server unreachable.
        """
        self._session.clear_error()
        try:
            return self._auth.sign_in_with_password(self.normalize_email(email), password)
        except Exception as exc:
            self._fail(exc, "Failed to sign in")
            raise

    # ==================================================================
    # Sign up
    # ==================================================================

    def sign_up(
        self,
        email: str,
        password: str,
        full_name: str,
        student_id: str,
        department: str,
        faculty: str,
        phone: str,
    ) -> Identity:
        """Register a campus member and leave them signed in.

        Steps: create the account with registration metadata, write its
        profile row (role=buyer), fire the welcome SMS, then refresh the
        profile (when sign-up returned a session) or sign in with the
        same credentials (when it did not).

        If the profile insert fails the account still exists; that
        inconsistency is accepted and reported as ``ProfileSetupError``.

        Raises:
            AuthError: Validation failed or Supabase refused the account.
            ProfileSetupError: The account exists but has no profile row.
        """
        self._session.clear_error()
        try:
            email = self.normalize_email(email)
            for check in (self.validate_email(email), self.validate_password(password)):
                if not check.is_valid:
                    raise AuthError(
                        check.error_message or "Invalid registration details.",
                        AuthErrorCode.VALIDATION_ERROR,
                    )

            metadata = IdentityMetadata(
                full_name=full_name,
                student_id=student_id,
                department=department,
                faculty=faculty,
                phone=phone,
            )
            identity, auth_session = self._auth.sign_up(email, password, metadata)

            self._create_signup_profile(
                Identity(id=identity.id, email=email, metadata=metadata),
            )

            log_audit_event(
                logger=self._logger,
                action="SIGN_UP",
                entity_type="Profile",
                entity_id=identity.id,
                user_id=identity.id,
                details={"email": email, "full_name": full_name},
            )

            self._send_welcome(phone, full_name)

            if auth_session is not None:
                self._session.begin(user=identity)
                self.refresh_profile()
            else:
                self.sign_in(email, password)

            return identity
        except Exception as exc:
            self._fail(exc, "Failed to sign up")
            raise

    def _create_signup_profile(self, identity: Identity) -> None:
        """Write the profile row for a just-created account.

        A duplicate key means the notification path already self-healed
        the row, which is fine.

        Raises:
            ProfileSetupError: Any other store failure.
        """
        try:
            self._repo.insert(ProfileResolver.seed_profile(identity))
        except DuplicateProfileError:
            self._logger.info(
                "Profile for %s already exists; sign-up insert skipped.", identity.id,
            )
        except StoreError as exc:
            self._logger.error(
                "Profile creation failed for new account %s: %s",
                identity.id,
                exc,
                extra={"event": "PROFILE_SETUP_FAILED", "user_id": identity.id},
            )
            raise ProfileSetupError(identity.id, original_error=exc) from exc

    def _send_welcome(self, phone: str, full_name: str) -> None:
        """Fire the welcome SMS; its failure never fails sign-up."""
        if not phone or not phone.strip():
            return
        text = (
            f"Welcome to {self._config.APP_DISPLAY_NAME}, {full_name}! "
            "Your account has been successfully created. Browse the "
            "marketplace and connect with fellow students."
        )
        try:
            self._messaging.notify([phone], text)
        except Exception as exc:
            self._logger.error("Failed to send welcome SMS: %s", exc)

    # ==================================================================
    # Sign out
    # ==================================================================

    def sign_out(self) -> None:
        """End the session.

        The cached snapshot is evicted first and stays evicted even when
        the server call fails.  Presence is set offline while the session
        is still valid.  When the server call fails the session is still
        live, so presence goes back online and the heartbeat resumes.

        Raises:
            AuthError: The server-side sign-out failed.
        """
        self._session.clear_error()
        user = self._session.user

        self._cache.evict_profile()
        self._presence.stop_heartbeat()
        if user is not None:
            self._presence.report(user.id, False)

        try:
            self._auth.sign_out()
        except Exception as exc:
            self._fail(exc, "Failed to sign out")
            if user is not None and self._owns_session(user.id):
                self._presence.report(user.id, True)
                self._presence.start_heartbeat(user.id)
            raise

        if user is not None:
            log_audit_event(
                logger=self._logger,
                action="SIGN_OUT",
                entity_type="Session",
                entity_id=user.id,
                user_id=user.id,
            )

    # ==================================================================
    # Profile refresh
    # ==================================================================

    def refresh_profile(self) -> Optional[Profile]:
        """Re-resolve the profile of the signed-in user.

        No-op without a user.  The local cache is left untouched.
        """
        user = self._session.user
        if user is None:
            return None

        self._session.clear_error()
        try:
            ticket = self._session.begin()
            profile = self._resolver.resolve(user.id, user)
            if not self._session.commit(
                ticket, SessionState.AUTHENTICATED, profile=profile,
            ):
                self._logger.info("Discarding stale profile refresh for %s.", user.id)
                return self._session.profile
            return profile
        except Exception as exc:
            self._fail(exc, "Failed to refresh profile")
            raise

    # ==================================================================
    # Password reset
    # ==================================================================

    def request_password_reset(self, email: str) -> None:
        """Email a password-reset link to *email*.

        Raises:
            AuthError: Invalid address or delivery failure.
        """
        self._session.clear_error()
        try:
            check = self.validate_email(email)
            if not check.is_valid:
                raise AuthError(
                    check.error_message or "Invalid email address.",
                    AuthErrorCode.VALIDATION_ERROR,
                )
            self._auth.request_password_reset(
                self.normalize_email(email),
                self._config.PASSWORD_RESET_REDIRECT_URL,
            )
        except Exception as exc:
            self._fail(exc, "Failed to send reset email")
            raise

    # ==================================================================
    # Error bookkeeping
    # ==================================================================

    def _fail(self, exc: Exception, fallback: str) -> None:
        """Record *exc* as the shared session error."""
        message = getattr(exc, "message", None) or str(exc) or fallback
        self._session.set_error(message)
        self._logger.warning("%s: %s", fallback, message)
