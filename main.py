"""
PU Connect Session Core Entry Point.

Bootstraps the dependency graph via constructor injection, initialises
the local SQLite schema, restores the session and keeps it alive (auth
notifications plus the presence heartbeat) until interrupted.  Every
subsystem is wired here; no module-level globals.

Usage::

    python main.py
"""

from __future__ import annotations

import atexit
import sys
import threading
from pathlib import Path
from typing import Optional

from pu_connect.auth import SessionManager
from pu_connect.config import AppConfig, get_config
from pu_connect.database import DatabaseManager
from pu_connect.guards import landing_route_for
from pu_connect.logger import StructuredLogger, get_logger
from pu_connect.models.auth_models import SessionSnapshot
from pu_connect.schema import initialize_schema
from pu_connect.services import create_services
from pu_connect.services.sms_service import SmsService


def log_sms_balance(
    config: AppConfig,
    sms_service: SmsService,
    logger: StructuredLogger,
) -> Optional[int]:
    """Log the remaining Arkesel units when SMS is configured."""
    if not config.ARKESEL_API_KEY.get_secret_value():
        return None
    units = sms_service.get_balance()
    if units <= 0:
        logger.warning("Arkesel SMS balance is empty or unknown; welcome messages may fail.")
    else:
        logger.info("Arkesel SMS balance: %d unit(s).", units)
    return units


def main() -> None:
    """Application entry point: wire dependencies and run the session."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting PU Connect session core...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Database Manager (Supabase optional, SQLite always)
    # ------------------------------------------------------------------
    db = DatabaseManager(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path(config.LOCAL_DB_PATH),
        logger=StructuredLogger(name="database"),
    )
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite Schema Initialization (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 4. Session Manager + Service Container
    # ------------------------------------------------------------------
    session = SessionManager(logger=get_logger("session_state"))

    def _log_transition(snapshot: SessionSnapshot) -> None:
        logger.debug(
            "Session is now %s.", snapshot.state,
            extra={"sequence": snapshot.sequence},
        )

    session.add_listener(_log_transition)

    services = create_services(db=db, config=config, session=session)
    controller = services["session_controller"]

    # atexit runs handlers last-in first-out: controller before db.
    atexit.register(services["sms_service"].close)
    atexit.register(controller.close)

    log_sms_balance(config, services["sms_service"], logger)

    # ------------------------------------------------------------------
    # 5. Restore the session and idle until interrupted
    # ------------------------------------------------------------------
    snapshot = controller.start()
    if snapshot.is_authenticated:
        role = snapshot.profile.role if snapshot.profile is not None else None
        logger.info(
            "Signed in as %s; landing on %s.",
            snapshot.user.email if snapshot.user is not None else "?",
            landing_route_for(role),
        )
    elif snapshot.error:
        logger.error("Session restore failed: %s", snapshot.error)
    else:
        logger.info("No active session.")

    stop = threading.Event()
    try:
        while not stop.wait(timeout=1.0):
            pass
    finally:
        controller.close()
        services["sms_service"].close()
        db.close()
        logger.info("PU Connect session core shut down.")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n")
        sys.exit(1)
