"""
Base Repository.

Provides shared infrastructure for repositories over Supabase tables:
- DatabaseManager reference
- Logger reference
- Translation of PostgREST / transport failures into typed exceptions
"""

from __future__ import annotations

from typing import Callable, TypeVar

import httpx
from supabase import Client as SupabaseClient

from appfun.database import DatabaseManager
from appfun.exceptions import (
    InvitationStoreError,
    InvitationStoreMissingError,
    InvitationStoreOfflineError,
)
from appfun.logger import StructuredLogger

T = TypeVar("T")

# Postgres "undefined_table" and PostgREST "table not in schema cache".
_MISSING_RELATION_CODES: frozenset[str] = frozenset({"42P01", "PGRST205"})


def is_missing_relation(exc: BaseException) -> bool:
    """``True`` when *exc* reports that the queried table does not exist."""
    code = str(getattr(exc, "code", "") or "")
    if code in _MISSING_RELATION_CODES:
        return True
    message = str(getattr(exc, "message", "") or exc).lower()
    return "relation" in message and "does not exist" in message


class BaseRepository:
    """Base class for all repositories. Receives dependencies via __init__."""

    TABLE: str = ""

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    @property
    def supabase(self) -> SupabaseClient:
        """Returns the Supabase client.

        Raises ``RuntimeError`` when running offline.
        """
        return self._db.supabase

    @property
    def is_online(self) -> bool:
        return self._db.is_online

    def _run(self, operation_name: str, op: Callable[[], T]) -> T:
        """Execute a Supabase call, normalising its failures.

        Offline is decided from the database state alone; a
        ``RuntimeError`` raised by a configured client is a store failure.

        Raises
        ------
        InvitationStoreOfflineError
            Supabase is not configured (offline mode).
        InvitationStoreMissingError
            The table does not exist.
        TimeoutError
            The request exceeded the configured timeout.
        InvitationStoreError
            Any other store or transport failure.
        """
        if not self._db.is_online:
            raise InvitationStoreOfflineError()
        try:
            return op()
        except httpx.TimeoutException as exc:
            self._logger.warning("Store request %s timed out: %s", operation_name, exc)
            raise TimeoutError(f"{operation_name} timed out") from exc
        except Exception as exc:
            if is_missing_relation(exc):
                self._logger.warning(
                    "Relation %s missing during %s: %s", self.TABLE, operation_name, exc,
                )
                raise InvitationStoreMissingError(
                    f"{self.TABLE} relation does not exist"
                ) from exc
            self._logger.error("Store request %s failed: %s", operation_name, exc)
            raise InvitationStoreError(str(exc)) from exc
