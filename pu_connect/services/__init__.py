"""
Session Core Services Package.

Services depend on the Repository layer for data access and on the
shared ``SessionManager`` for session state.

The ``create_services()`` factory wires every repository and service together,
returning a typed dict that the application layer can consume without
knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import TypedDict

from pu_connect.auth import SessionManager
from pu_connect.config import AppConfig
from pu_connect.database import DatabaseManager
from pu_connect.logger import get_logger
from pu_connect.repositories.profile_repository import ProfileRepository
from pu_connect.services.auth_client import SupabaseAuthClient
from pu_connect.services.local_cache import LocalCacheService
from pu_connect.services.presence import PresenceReporter
from pu_connect.services.profile_resolver import ProfileResolver
from pu_connect.services.session_controller import SessionController
from pu_connect.services.sms_service import SmsService


class ServiceContainer(TypedDict):
    """Typed container for all session-core services."""

    profile_repository: ProfileRepository
    auth_client: SupabaseAuthClient
    local_cache: LocalCacheService
    profile_resolver: ProfileResolver
    presence_reporter: PresenceReporter
    sms_service: SmsService
    session_controller: SessionController


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    session: SessionManager,
) -> ServiceContainer:
    """
    Wire all repositories and services together.

    This is the single composition root for the service layer.  The
    application entry-point calls this once at startup, then starts the
    returned ``session_controller``.

    Args:
        db: Initialised DatabaseManager with Supabase + SQLite ready.
        config: Application configuration (injected into services that need it).
        session: The shared session state holder.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("services")

    # ------------------------------------------------------------------
    # 1. Repositories (data-access layer)
    # ------------------------------------------------------------------
    profile_repo = ProfileRepository(db=db, logger=logger)

    # ------------------------------------------------------------------
    # 2. Leaf services (no service dependencies)
    # ------------------------------------------------------------------
    auth_client = SupabaseAuthClient(db=db, logger=logger)
    local_cache = LocalCacheService(
        db=db,
        logger=get_logger("local_cache"),
        profile_key=config.PROFILE_CACHE_KEY,
        salt_path=config.CACHE_SALT_PATH,
        kdf_iterations=config.CACHE_KDF_ITERATIONS,
    )
    presence_reporter = PresenceReporter(
        repo=profile_repo,
        logger=get_logger("presence"),
        interval_s=config.PRESENCE_HEARTBEAT_INTERVAL_S,
    )
    sms_service = SmsService(config=config, logger=logger)

    profile_resolver = ProfileResolver(
        repo=profile_repo,
        auth=auth_client,
        logger=logger,
    )

    # ------------------------------------------------------------------
    # 3. Orchestration (depends on every service above)
    # ------------------------------------------------------------------
    session_controller = SessionController(
        session=session,
        auth=auth_client,
        repo=profile_repo,
        resolver=profile_resolver,
        presence=presence_reporter,
        cache=local_cache,
        messaging=sms_service,
        config=config,
        logger=get_logger("session"),
    )

    return ServiceContainer(
        profile_repository=profile_repo,
        auth_client=auth_client,
        local_cache=local_cache,
        profile_resolver=profile_resolver,
        presence_reporter=presence_reporter,
        sms_service=sms_service,
        session_controller=session_controller,
    )
