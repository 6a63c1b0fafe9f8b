"""
Presence Reporter.

Writes the "online" flag and last-seen timestamp of the signed-in member
to their profile row, so other members can see who is around.

Writes happen:
    - once right after a profile resolves (session start, every auth
      notification carrying a session);
    - on a heartbeat daemon thread every ``interval_s`` seconds
      (10 minutes by default), reasserting ``online=True``;
    - with ``online=False`` on sign-out and controller teardown.

When a session ends through a notification the heartbeat is stopped
without a final write; the row is no longer ours to update.

Every write is best-effort: failures are logged and swallowed.  Writes
for the same identity are idempotent (same flag, advancing timestamp),
so the heartbeat and the session controller may report concurrently
without a lock.

Known limitation: the final ``online=False`` write at teardown has no
delivery guarantee.  If the process is killed before the request lands,
the row keeps ``is_online=True`` until the next session overwrites it.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from pu_connect.logger import StructuredLogger
from pu_connect.repositories.profile_repository import ProfileRepository
from pu_connect.services.base_service import BaseService

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PresenceReporter(BaseService):
    """Best-effort presence writer with a heartbeat thread.

    Parameters
    ----------
    repo:
        Profile repository receiving the presence updates.
    logger:
        Structured JSON logger.
    interval_s:
        Heartbeat period in seconds.
    clock:
        Source of "now" for ``last_seen``.
    """

    _DEFAULT_INTERVAL_S: float = 600.0

    def __init__(
        self,
        repo: ProfileRepository,
        logger: StructuredLogger,
        interval_s: float = _DEFAULT_INTERVAL_S,
        clock: Clock = _utcnow,
    ) -> None:
        super().__init__(logger)
        self._repo: ProfileRepository = repo
        self._interval_s: float = interval_s
        self._clock: Clock = clock
        self._thread: Optional[threading.Thread] = None
        self._stop_event: threading.Event = threading.Event()
        self._identity_id: Optional[str] = None
        self._lock: threading.Lock = threading.Lock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def report(self, identity_id: str, is_online: bool) -> bool:
        """Write the presence flag for *identity_id*.

        Returns ``True`` when the store accepted the write.  Never raises.
        """
        try:
            self._repo.set_presence(identity_id, is_online, self._clock())
        except Exception as exc:
            self._logger.warning(
                "Failed to update online status for %s: %s", identity_id, exc,
            )
            return False
        self._logger.debug("Presence for %s set to %s.", identity_id, is_online)
        return True

    # ------------------------------------------------------------------
    # Heartbeat lifecycle
    # ------------------------------------------------------------------

    def start_heartbeat(self, identity_id: str) -> None:
        """Run the heartbeat for *identity_id* on a daemon thread.

        Idempotent for the same identity; switching identity restarts
        the thread.  The old thread is replaced under the lock and
        joined after it is released, so concurrent callers never leave
        more than one heartbeat alive.
        """
        with self._lock:
            if self.is_running and self._identity_id == identity_id:
                return
            previous = self._thread
            self._stop_event.set()
            self._identity_id = identity_id
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(identity_id, self._stop_event),
                name="PresenceHeartbeat",
                daemon=True,
            )
            self._thread.start()
        self._logger.info(
            "Presence heartbeat started for %s (every %.0fs).",
            identity_id,
            self._interval_s,
        )
        self._join(previous)

    def stop_heartbeat(self, identity_id: Optional[str] = None) -> None:
        """Signal the heartbeat to stop and wait briefly for it to exit.

        Safe to call when no heartbeat is running.  With *identity_id*,
        only a heartbeat running for that identity is stopped.
        """
        with self._lock:
            if identity_id is not None and self._identity_id != identity_id:
                return
            thread = self._thread
            self._thread = None
            self._identity_id = None
            self._stop_event.set()
        self._join(thread)

    def _join(self, thread: Optional[threading.Thread]) -> None:
        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout=5.0)
        if thread.is_alive():
            self._logger.warning("Presence heartbeat did not terminate within 5 s.")
        else:
            self._logger.info("Presence heartbeat stopped.")

    @property
    def is_running(self) -> bool:
        """``True`` when the heartbeat thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def identity_id(self) -> Optional[str]:
        """Identity the heartbeat is reporting for, if any."""
        return self._identity_id

    # ------------------------------------------------------------------
    # Core loop
    # ------------------------------------------------------------------

    def _run_loop(self, identity_id: str, stop_event: threading.Event) -> None:
        """Reassert ``online=True`` every interval until *stop_event* is set."""
        try:
            while not stop_event.wait(timeout=self._interval_s):
                self.report(identity_id, True)
        except Exception:
            self._logger.error(
                "Presence heartbeat terminated due to unhandled exception.",
                exc_info=True,
            )
