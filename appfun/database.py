"""
Database Abstraction Layer.

Manages the two stores the auth core talks to:

- **SQLite (local)**: the machine-local key-value store that stands in
  for browser storage.  Holds the encrypted session envelope under
  ``AUTH_STORAGE_KEY`` and local override flags such as ``under_review``.

- **Supabase (cloud PostgreSQL)**: the shared record store holding the
  ``invitation_codes`` and ``user_profiles`` tables.  Optional: when the
  URL or key is empty the client is not created and every consumer
  falls back to its offline / degraded path.

This module only manages the raw *connections*; it contains no query
logic.  Data access goes through repositories and ``LocalStorage``.

Usage (dependency injection at app startup)::

    from appfun.database import DatabaseManager
    from appfun.logger import StructuredLogger

    db = DatabaseManager(
        supabase_url=settings.SUPABASE_URL,
        supabase_key=settings.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path(settings.LOCAL_DB_PATH),
        logger=StructuredLogger(name="database"),
        request_timeout=settings.REQUEST_TIMEOUT_S,
    )
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Optional

from supabase import Client as SupabaseClient
from supabase import ClientOptions, create_client

from appfun.logger import StructuredLogger


class DatabaseManager:
    """Manages the local SQLite connection and the optional Supabase client.

    Fully configured at construction time via dependency injection.

    When ``supabase_url`` or ``supabase_key`` is empty the Supabase client
    is **not** created.  The ``RuntimeError`` raised by the ``supabase``
    property is what repositories catch to enter degraded mode.

    Parameters
    ----------
    supabase_url:
        The Supabase project URL.  May be empty to run offline.
    supabase_key:
        The Supabase anonymous key.  May be empty to run offline.
    sqlite_path:
        Filesystem path for the local SQLite database file, or
        ``":memory:"``.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    request_timeout:
        Bound, in seconds, applied to every PostgREST request.
    client:
        Pre-built Supabase client.  Overrides ``supabase_url`` /
        ``supabase_key`` when given.
    """

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        sqlite_path: Path,
        logger: StructuredLogger,
        request_timeout: float = 10.0,
        client: Optional[SupabaseClient] = None,
    ) -> None:
        if request_timeout <= 0:
            raise ValueError("request_timeout must be a positive number of seconds")

        self._logger: StructuredLogger = logger
        self._write_lock: threading.RLock = threading.RLock()
        self._request_timeout: float = request_timeout

        # --- Supabase (optional) ---
        self._supabase: Optional[SupabaseClient] = client
        if client is not None:
            self._logger.info("Using injected Supabase client.")
        elif supabase_url and supabase_key:
            try:
                self._supabase = create_client(
                    supabase_url,
                    supabase_key,
                    options=ClientOptions(
                        postgrest_client_timeout=request_timeout,
                        auto_refresh_token=False,
                        persist_session=False,
                    ),
                )
                self._logger.info("Supabase client initialized.")
            except (ValueError, TypeError) as exc:
                self._logger.warning(
                    "Supabase credential format error: %s. Running in offline mode.",
                    exc,
                )
            except Exception as exc:
                self._logger.error(
                    "Unexpected Supabase initialization failure: %s. "
                    "Running in offline mode.",
                    exc,
                    exc_info=True,
                )
        else:
            self._logger.warning(
                "Supabase credentials not configured; running in offline mode."
            )

        # --- SQLite (always required) ---
        self._sqlite_conn: sqlite3.Connection = self._connect_sqlite(sqlite_path)

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def supabase(self) -> SupabaseClient:
        """Return the initialised Supabase client.

        Raises
        ------
        RuntimeError
            If the Supabase client was not initialised (offline mode).
        """
        if self._supabase is None:
            raise RuntimeError(
                "Supabase client is not initialised. "
                "The application is running in offline mode."
            )
        return self._supabase

    @property
    def is_online(self) -> bool:
        """``True`` when the Supabase client is available."""
        return self._supabase is not None

    @property
    def request_timeout(self) -> float:
        return self._request_timeout

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Return the initialised SQLite connection."""
        return self._sqlite_conn

    @property
    def write_lock(self) -> threading.RLock:
        """Return the write lock for thread-safe SQLite operations.

        All code that performs SQLite writes should acquire this lock
        first::

            with db.write_lock:
                db.sqlite.execute("INSERT ...")
                db.sqlite.commit()
        """
        return self._write_lock

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the local SQLite connection.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        with self._write_lock:
            try:
                self._sqlite_conn.close()
                self._logger.info("SQLite connection closed.")
            except sqlite3.ProgrammingError:
                # Already closed.
                pass

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _connect_sqlite(self, path: Path) -> sqlite3.Connection:
        """Open (or create) the local SQLite database.

        Raises
        ------
        PermissionError
            If the OS denies access to the database file or its directory.
        """
        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            if str(path) != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL;")
            self._logger.info("SQLite database opened at %s", path)
            return conn
        except PermissionError as exc:
            msg = (
                f"Cannot open the local database at '{path}'. "
                "The file or its directory may be read-only or locked by "
                "another process.  Please check file permissions and try again."
            )
            self._logger.error(msg)
            raise PermissionError(msg) from exc
