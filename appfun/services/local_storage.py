"""
Local Storage Service.

Read/write access to the ``local_storage`` key-value table in the local
SQLite database.  This is the machine-wide equivalent of browser
``localStorage``: every process on the machine sharing the same database
file sees the same keys.

Like every storage primitive in this package, failures are logged and
reported as ``None`` / ``False`` rather than raised.
"""

from __future__ import annotations

from typing import Optional

from appfun.database import DatabaseManager
from appfun.logger import StructuredLogger


class LocalStorage:
    """Persistent string key-value store in local SQLite.

    Parameters
    ----------
    db:
        Initialised ``DatabaseManager`` with active SQLite connection.
    logger:
        Structured logger instance.
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    def get(self, key: str) -> Optional[str]:
        """Read a value by key.  Returns ``None`` if not found or unreadable."""
        try:
            row = self._db.sqlite.execute(
                "SELECT value FROM local_storage WHERE key = ?",
                (key,),
            ).fetchone()
            return row["value"] if row is not None else None
        except Exception as exc:
            self._logger.warning("Failed to read local_storage[%s]: %s", key, exc)
            return None

    def set(self, key: str, value: str) -> bool:
        """Upsert a value.  Returns ``True`` on success."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    """
                    INSERT INTO local_storage (key, value)
                    VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value      = excluded.value,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, value),
                )
                self._db.sqlite.commit()
            self._logger.debug("local_storage[%s] updated.", key)
            return True
        except Exception as exc:
            self._logger.error("Failed to write local_storage[%s]: %s", key, exc)
            return False

    def remove(self, key: str) -> bool:
        """Delete a key.  Removing a missing key is a success."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    "DELETE FROM local_storage WHERE key = ?",
                    (key,),
                )
                self._db.sqlite.commit()
            self._logger.debug("local_storage[%s] removed.", key)
            return True
        except Exception as exc:
            self._logger.error("Failed to remove local_storage[%s]: %s", key, exc)
            return False
