"""Tests for PresenceReporter: best-effort writes and heartbeat lifecycle."""

from __future__ import annotations

import itertools
import threading
import time
from datetime import datetime, timedelta, timezone

from pu_connect.services.presence import PresenceReporter

from .conftest import AMA_ID, KOFI_ID


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def _ticking_clock():
    start = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    counter = itertools.count()
    return lambda: start + timedelta(seconds=next(counter))


class TestReport:
    def test_writes_flag_and_timestamp(self, repo, logger):
        reporter = PresenceReporter(repo, logger, clock=_ticking_clock())

        assert reporter.report(AMA_ID, True) is True

        assert repo.presence_writes == [
            (AMA_ID, True, datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)),
        ]

    def test_store_failure_is_swallowed(self, repo, logger):
        repo.fail_updates = True
        reporter = PresenceReporter(repo, logger)

        assert reporter.report(AMA_ID, False) is False
        assert repo.presence_writes == []


class TestHeartbeat:
    def test_two_ticks_write_two_idempotent_online_updates(self, repo, logger):
        reporter = PresenceReporter(repo, logger, interval_s=0.02, clock=_ticking_clock())

        reporter.start_heartbeat(AMA_ID)
        try:
            assert _wait_for(lambda: len(repo.presence_writes) >= 2)
        finally:
            reporter.stop_heartbeat()

        first, second = repo.presence_writes[:2]
        assert first[:2] == second[:2] == (AMA_ID, True)
        assert second[2] > first[2]

    def test_heartbeat_survives_store_failures(self, repo, logger):
        repo.fail_updates = True
        reporter = PresenceReporter(repo, logger, interval_s=0.01)

        reporter.start_heartbeat(AMA_ID)
        time.sleep(0.05)
        try:
            assert reporter.is_running
        finally:
            reporter.stop_heartbeat()

    def test_start_is_idempotent_for_same_identity(self, presence):
        presence.start_heartbeat(AMA_ID)
        thread = presence._thread

        presence.start_heartbeat(AMA_ID)

        assert presence._thread is thread

    def test_switching_identity_restarts(self, presence):
        presence.start_heartbeat(AMA_ID)

        presence.start_heartbeat(KOFI_ID)

        assert presence.identity_id == KOFI_ID
        assert presence.is_running

    def test_stop_without_start_is_safe(self, presence):
        presence.stop_heartbeat()

        assert not presence.is_running
        assert presence.identity_id is None

    def test_stop_ends_thread(self, presence):
        presence.start_heartbeat(AMA_ID)

        presence.stop_heartbeat()

        assert not presence.is_running

    def test_stop_for_other_identity_leaves_heartbeat_running(self, presence):
        presence.start_heartbeat(KOFI_ID)

        presence.stop_heartbeat(AMA_ID)

        assert presence.is_running
        assert presence.identity_id == KOFI_ID

    def test_concurrent_starts_leave_one_heartbeat(self, presence):
        before = {t for t in threading.enumerate() if t.name == "PresenceHeartbeat"}
        barrier = threading.Barrier(8)

        def _start(identity_id: str) -> None:
            barrier.wait()
            presence.start_heartbeat(identity_id)

        starters = [
            threading.Thread(target=_start, args=(AMA_ID if i % 2 else KOFI_ID,))
            for i in range(8)
        ]
        for starter in starters:
            starter.start()
        for starter in starters:
            starter.join(timeout=5.0)

        def _ours():
            return [
                t for t in threading.enumerate()
                if t.name == "PresenceHeartbeat" and t not in before
            ]

        assert _wait_for(lambda: len(_ours()) == 1)
        assert presence.is_running
        assert presence.identity_id in (AMA_ID, KOFI_ID)

        presence.stop_heartbeat()

        assert _wait_for(lambda: not _ours())
