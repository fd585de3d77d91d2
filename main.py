"""
APPFUN Auth Core Entry Point.

Bootstraps the dependency graph via constructor injection, initialises
the local SQLite schema, restores the persisted session and serves the
auth API with uvicorn.  Every subsystem is wired here; no module-level
globals.

Usage::

    python main.py
"""

from __future__ import annotations

import atexit
import sys
from pathlib import Path

import uvicorn

from appfun.api import create_app
from appfun.config import get_config
from appfun.database import DatabaseManager
from appfun.logger import StructuredLogger, get_logger
from appfun.schema import initialize_schema
from appfun.services import create_services


def main() -> None:
    """Application entry point: wire dependencies and serve the API."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting APPFUN auth core...")

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
        request_timeout=config.REQUEST_TIMEOUT_S,
    )

    # close() is idempotent; this covers exits that skip the finally below.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite Schema Initialization (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 4. Service Container (single composition root)
    # ------------------------------------------------------------------
    services = create_services(db=db, config=config)

    # ------------------------------------------------------------------
    # 5. Restore the persisted session and reconcile with the provider
    # ------------------------------------------------------------------
    auth_manager = services["auth_manager"]
    state = auth_manager.initialize()
    logger.info(
        "Auth state initialised (logged_in=%s).", state.is_logged_in,
        extra={"event": "AUTH_INITIALIZED"},
    )
    stop_refresh = services["page_auth"].start_refresh_timer()

    # ------------------------------------------------------------------
    # 6. Serve the API (blocks until shutdown)
    # ------------------------------------------------------------------
    app = create_app(services)
    logger.info("Serving API on %s:%d", config.API_HOST, config.API_PORT)
    try:
        uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)
    finally:
        stop_refresh()
        auth_manager.shutdown()
        provider_close = getattr(services["identity_provider"], "close", None)
        if callable(provider_close):
            provider_close()
        db.close()
        logger.info("APPFUN auth core shut down.")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n")
        sys.exit(1)
