"""
Session State.

Provides an injectable ``SessionManager`` that holds the in-memory
session (``user``, ``profile``, ``state``, ``error``) for the lifetime of
a client process.  Only the session controller mutates it; everything
else reads immutable ``SessionSnapshot`` copies.

Transitions are sequenced.  Each asynchronous path that will later write
state (boot, an auth notification, a profile refresh) first takes a
ticket with :meth:`SessionManager.begin`.  A write carrying an older
ticket than the latest one issued is rejected, so a slow resolution can
never overwrite the result of a newer transition.

Usage::

    from pu_connect.auth import SessionManager

    session = SessionManager()
    ticket = session.begin(SessionState.AUTHENTICATING, user=identity)
    session.commit(ticket, SessionState.AUTHENTICATED, profile=profile)
    snapshot = session.snapshot()
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from pu_connect.logger import StructuredLogger, get_logger
from pu_connect.models.auth_models import SessionSnapshot
from pu_connect.models.enums import SessionState
from pu_connect.models.identity import Identity
from pu_connect.models.profile import Profile

_UNSET = object()

SessionListener = Callable[[SessionSnapshot], None]


class SessionManager:
    """Injectable, thread-safe holder for the current session.

    Each instance maintains its own state, eliminating module-level
    globals.  Pass a single ``SessionManager`` through the dependency
    injection layer so every component shares the same session.
    """

    def __init__(self, logger: Optional[StructuredLogger] = None) -> None:
        self._logger: StructuredLogger = logger or get_logger("session_state")
        self._lock: threading.RLock = threading.RLock()
        self._state: SessionState = SessionState.BOOTING
        self._user: Optional[Identity] = None
        self._profile: Optional[Profile] = None
        self._error: Optional[str] = None
        self._sequence: int = 0
        self._listeners: list[SessionListener] = []

    # ------------------------------------------------------------------
    # Sequenced transitions
    # ------------------------------------------------------------------

    def begin(
        self,
        state: Optional[SessionState] = None,
        *,
        user: object = _UNSET,
        profile: object = _UNSET,
    ) -> int:
        """Issue a new transition ticket, optionally applying state at once.

        Returns the ticket to pass to :meth:`commit`.
        """
        with self._lock:
            self._sequence += 1
            self._apply(state, user, profile)
            ticket = self._sequence
        self._notify()
        return ticket

    def commit(
        self,
        ticket: int,
        state: Optional[SessionState] = None,
        *,
        user: object = _UNSET,
        profile: object = _UNSET,
    ) -> bool:
        """Apply a transition result if *ticket* is still the latest one.

        Returns ``False`` (and changes nothing) when a newer transition
        has begun since the ticket was issued.
        """
        with self._lock:
            if ticket != self._sequence:
                return False
            self._apply(state, user, profile)
        self._notify()
        return True

    def is_current(self, ticket: int) -> bool:
        with self._lock:
            return ticket == self._sequence

    def clear(self) -> int:
        """Drop user and profile and move to ``UNAUTHENTICATED``.

        Supersedes every in-flight transition.
        """
        return self.begin(SessionState.UNAUTHENTICATED, user=None, profile=None)

    # ------------------------------------------------------------------
    # Unsequenced fields
    # ------------------------------------------------------------------

    def set_profile(self, profile: Optional[Profile]) -> None:
        """Replace the profile without taking a ticket (advisory cache restore)."""
        with self._lock:
            self._profile = profile
        self._notify()

    def set_error(self, message: Optional[str]) -> None:
        with self._lock:
            self._error = message
        self._notify()

    def clear_error(self) -> None:
        self.set_error(None)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        """Return an immutable copy of the current state."""
        with self._lock:
            return SessionSnapshot(
                state=self._state,
                user=self._user,
                profile=self._profile,
                error=self._error,
                sequence=self._sequence,
            )

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def user(self) -> Optional[Identity]:
        with self._lock:
            return self._user

    @property
    def profile(self) -> Optional[Profile]:
        with self._lock:
            return self._profile

    @property
    def error(self) -> Optional[str]:
        with self._lock:
            return self._error

    @property
    def loading(self) -> bool:
        """``True`` only while booting or authenticating."""
        with self._lock:
            return self._state in (SessionState.BOOTING, SessionState.AUTHENTICATING)

    @property
    def is_authenticated(self) -> bool:
        """``True`` when a user is currently signed in."""
        with self._lock:
            return self._user is not None and self._state == SessionState.AUTHENTICATED

    def get_current_user(self) -> Identity:
        """Return the signed-in identity.

        Raises:
            RuntimeError: If no user is currently authenticated.
        """
        with self._lock:
            if self._user is None:
                raise RuntimeError(
                    "No user is currently authenticated. Login required."
                )
            return self._user

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_listener(self, listener: SessionListener) -> None:
        """Register *listener* to receive a snapshot after every change."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _apply(
        self,
        state: Optional[SessionState],
        user: object,
        profile: object,
    ) -> None:
        # Caller holds self._lock.
        if state is not None:
            self._state = state
        if user is not _UNSET:
            self._user = user  # type: ignore[assignment]
        if profile is not _UNSET:
            self._profile = profile  # type: ignore[assignment]

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        snapshot = self.snapshot()
        for listener in listeners:
            # Listener failures are logged; the transition stands.
            try:
                listener(snapshot)
            except Exception:
                self._logger.error(
                    "Session listener %r failed on %s.", listener, snapshot.state,
                    exc_info=True,
                )
