"""Test fixtures for the PU Connect session core.

Supabase is never contacted.  ``FakeAuthClient`` stands in for the auth
adapter and emits auth-state notifications synchronously from the
credential calls, the way the sync ``supabase`` client does.
``FakeProfileRepository`` keeps profile rows in a dict and can be told to
fail in the ways the real store fails.  The local cache is the real
``LocalCacheService`` over an in-memory SQLite database.
"""

from __future__ import annotations

import io
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Optional

import pytest

from pu_connect.auth import SessionManager
from pu_connect.config import AppConfig
from pu_connect.database import DatabaseManager
from pu_connect.logger import StructuredLogger
from pu_connect.models.auth_models import AuthError, AuthErrorCode
from pu_connect.models.enums import ProfileOrigin, UserRole
from pu_connect.models.identity import AuthSession, Identity, IdentityMetadata
from pu_connect.models.profile import Profile
from pu_connect.repositories.base_repository import (
    DuplicateProfileError,
    ProfileNotFoundError,
    StoreUnavailableError,
)
from pu_connect.schema import initialize_schema
from pu_connect.services.local_cache import LocalCacheService
from pu_connect.services.presence import PresenceReporter
from pu_connect.services.profile_resolver import ProfileResolver
from pu_connect.services.session_controller import SessionController

# -- Realistic campus members ------------------------------------------------

AMA_ID = str(uuid.uuid4())
KOFI_ID = str(uuid.uuid4())

AMA_EMAIL = "ama.mensah@pentvars.edu.gh"
KOFI_EMAIL = "kofi.boateng@pentvars.edu.gh"
PASSWORD = "s3cret-pass"


def make_identity(
    identity_id: str = AMA_ID,
    email: str = AMA_EMAIL,
    full_name: Optional[str] = "Ama Mensah",
    **metadata: str,
) -> Identity:
    return Identity(
        id=identity_id,
        email=email,
        metadata=IdentityMetadata(full_name=full_name, **metadata),
    )


def make_profile(
    identity_id: str = AMA_ID,
    email: str = AMA_EMAIL,
    full_name: str = "Ama Mensah",
    role: UserRole = UserRole.BUYER,
) -> Profile:
    return Profile(
        id=identity_id,
        email=email,
        full_name=full_name,
        student_id="PU/2023/0417",
        department="Computer Science",
        faculty="Science and Computing",
        phone="0241234567",
        role=role,
    )


# ============================================================================
# Fake auth adapter
# ============================================================================


class FakeSubscription:
    def __init__(self, owner: "FakeAuthClient", callback: Callable[[Optional[AuthSession]], None]) -> None:
        self._owner = owner
        self._callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._owner.listeners.remove(self._callback)


class FakeAuthClient:
    """In-memory stand-in for ``SupabaseAuthClient``.

    Notifications are delivered synchronously from ``sign_in_with_password``,
    ``sign_up`` (when it yields a session) and ``sign_out``.
    """

    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, Identity]] = {}
        self.current: Optional[AuthSession] = None
        self.listeners: list[Callable[[Optional[AuthSession]], None]] = []
        self.confirm_email: bool = False
        self.fail_get_session: Optional[Exception] = None
        self.fail_sign_out: Optional[Exception] = None
        self.fail_sign_in: Optional[Exception] = None
        self.reset_requests: list[tuple[str, str]] = []
        self.sign_in_calls: list[str] = []
        self.sign_out_calls: int = 0

    # -- helpers for tests ---------------------------------------------------

    def register(self, identity: Identity, password: str = PASSWORD) -> Identity:
        self.accounts[identity.email] = (password, identity)
        return identity

    def restore(self, identity: Identity) -> AuthSession:
        """Pretend a persisted session exists for *identity*."""
        self.current = AuthSession(identity=identity, access_token="tok")
        return self.current

    def emit(self, session: Optional[AuthSession]) -> None:
        for listener in list(self.listeners):
            listener(session)

    # -- adapter contract ----------------------------------------------------

    def get_current_session(self) -> Optional[AuthSession]:
        if self.fail_get_session is not None:
            raise self.fail_get_session
        return self.current

    def get_identity(self) -> Optional[Identity]:
        return self.current.identity if self.current is not None else None

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        self.sign_in_calls.append(email)
        if self.fail_sign_in is not None:
            raise self.fail_sign_in
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise AuthError("Invalid login credentials", AuthErrorCode.INVALID_CREDENTIALS)
        self.current = AuthSession(identity=account[1], access_token="tok")
        self.emit(self.current)
        return self.current

    def sign_up(
        self,
        email: str,
        password: str,
        metadata: IdentityMetadata,
    ) -> tuple[Identity, Optional[AuthSession]]:
        if email in self.accounts:
            raise AuthError("User already registered", AuthErrorCode.EMAIL_ALREADY_EXISTS)
        identity = Identity(id=str(uuid.uuid4()), email=email, metadata=metadata)
        self.register(identity, password)
        if self.confirm_email:
            return identity, None
        self.current = AuthSession(identity=identity, access_token="tok")
        self.emit(self.current)
        return identity, self.current

    def sign_out(self) -> None:
        self.sign_out_calls += 1
        if self.fail_sign_out is not None:
            raise self.fail_sign_out
        self.current = None
        self.emit(None)

    def request_password_reset(self, email: str, return_url: str) -> None:
        self.reset_requests.append((email, return_url))

    def subscribe(self, on_change: Callable[[Optional[AuthSession]], None]) -> FakeSubscription:
        self.listeners.append(on_change)
        return FakeSubscription(self, on_change)


# ============================================================================
# Fake profile store
# ============================================================================


class FakeProfileRepository:
    """Dict-backed stand-in for ``ProfileRepository``."""

    def __init__(self) -> None:
        self.rows: dict[str, Profile] = {}
        self.unavailable: bool = False
        self.fail_inserts: bool = False
        self.fail_updates: bool = False
        self.race_on_insert: bool = False
        self.insert_calls: list[str] = []
        self.presence_writes: list[tuple[str, bool, datetime]] = []
        self.before_get: Optional[Callable[[str], None]] = None
        self.before_presence: Optional[Callable[[str, bool], None]] = None
        self._lock = threading.Lock()

    def get_by_id(self, profile_id: str) -> Profile:
        if self.before_get is not None:
            self.before_get(profile_id)
        if self.unavailable:
            raise StoreUnavailableError("connection refused")
        row = self.rows.get(profile_id)
        if row is None:
            raise ProfileNotFoundError("No matching row")
        return row.model_copy()

    def insert(self, profile: Profile) -> Profile:
        self.insert_calls.append(profile.id)
        if self.fail_inserts or self.unavailable:
            raise StoreUnavailableError("insert rejected")
        with self._lock:
            if self.race_on_insert:
                # Another client wins the race just before this insert lands.
                self.rows[profile.id] = profile.model_copy(update={"full_name": "Written Elsewhere"})
            if profile.id in self.rows:
                raise DuplicateProfileError("Row already exists")
            self.rows[profile.id] = profile.model_copy()
        return profile.model_copy(update={"origin": ProfileOrigin.CREATED})

    def update_by_id(self, profile_id: str, patch: dict[str, Any]) -> None:
        if self.fail_updates or self.unavailable:
            raise StoreUnavailableError("update rejected")
        row = self.rows.get(profile_id)
        if row is not None:
            self.rows[profile_id] = row.model_copy(update=patch)

    def set_presence(self, profile_id: str, is_online: bool, seen_at: datetime) -> None:
        if self.before_presence is not None:
            self.before_presence(profile_id, is_online)
        if self.fail_updates or self.unavailable:
            raise StoreUnavailableError("update rejected")
        self.presence_writes.append((profile_id, is_online, seen_at))


# ============================================================================
# Fake messaging collaborator
# ============================================================================


class RecordingMessenger:
    def __init__(self) -> None:
        self.sent: list[tuple[list[str], str]] = []
        self.fail: bool = False

    def notify(self, recipients: list[str], text: str) -> None:
        if self.fail:
            raise RuntimeError("sms gateway down")
        self.sent.append((list(recipients), text))


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def logger(tmp_path_factory: pytest.TempPathFactory) -> StructuredLogger:
    log_file = tmp_path_factory.mktemp("logs") / "test.log"
    return StructuredLogger(
        name="pu_connect.tests",
        stream=io.StringIO(),
        log_file=str(log_file),
    )


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        _env_file=None,
        SUPABASE_URL="",
        ARKESEL_API_KEY="test-arkesel-key",
        PASSWORD_RESET_REDIRECT_URL="https://connect.pentvars.edu.gh/reset-password",
    )


@pytest.fixture
def db(logger: StructuredLogger):
    manager = DatabaseManager(
        supabase_url="",
        supabase_key="",
        sqlite_path=":memory:",
        logger=logger,
    )
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def cache(db: DatabaseManager, logger: StructuredLogger, tmp_path) -> LocalCacheService:
    return LocalCacheService(
        db=db,
        logger=logger,
        salt_path=tmp_path / "cache_salt",
        kdf_iterations=1_000,
    )


@pytest.fixture
def auth() -> FakeAuthClient:
    return FakeAuthClient()


@pytest.fixture
def repo() -> FakeProfileRepository:
    return FakeProfileRepository()


@pytest.fixture
def messenger() -> RecordingMessenger:
    return RecordingMessenger()


@pytest.fixture
def session(logger) -> SessionManager:
    return SessionManager(logger=logger)


@pytest.fixture
def resolver(repo: FakeProfileRepository, auth: FakeAuthClient, logger: StructuredLogger) -> ProfileResolver:
    return ProfileResolver(repo=repo, auth=auth, logger=logger)


@pytest.fixture
def presence(repo: FakeProfileRepository, logger: StructuredLogger):
    reporter = PresenceReporter(repo=repo, logger=logger, interval_s=3600.0)
    yield reporter
    reporter.stop_heartbeat()


@pytest.fixture
def controller(
    session: SessionManager,
    auth: FakeAuthClient,
    repo: FakeProfileRepository,
    resolver: ProfileResolver,
    presence: PresenceReporter,
    cache: LocalCacheService,
    messenger: RecordingMessenger,
    config: AppConfig,
    logger: StructuredLogger,
):
    ctrl = SessionController(
        session=session,
        auth=auth,
        repo=repo,
        resolver=resolver,
        presence=presence,
        cache=cache,
        messaging=messenger,
        config=config,
        logger=logger,
    )
    yield ctrl
    ctrl.close()
