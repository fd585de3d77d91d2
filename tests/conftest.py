# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# Shared fixtures for the auth core tests.
#
# Key features:
# - Forces offline configuration and a temp log file before any imports
# - In-memory stand-in for the Supabase table API (atomic conditional
#   updates, missing-relation errors)
# - Scriptable identity provider and a controllable clock
# =============================================================================

import os
import tempfile

# =============================================================================
# Set up test environment BEFORE any imports
# =============================================================================
# appfun.logger reads AppConfig on first use, so this must come first.

os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_ANON_KEY"] = ""
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "appfun-tests.log"))

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import pytest
from postgrest.exceptions import APIError

from appfun.config import AppConfig
from appfun.database import DatabaseManager
from appfun.exceptions import ProviderError
from appfun.logger import StructuredLogger
from appfun.models.session import IdentitySession, IdentityUser
from appfun.repositories.invitation_repository import InvitationRepository
from appfun.schema import initialize_schema
from appfun.services.auth_manager import AuthStateManager
from appfun.services.invitation_service import InvitationService
from appfun.services.local_storage import LocalStorage
from appfun.services.review_mode import ReviewModePolicy
from appfun.services.session_store import SessionStore

TEST_KDF_ITERATIONS = 1_000
EPOCH = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Clock
# =============================================================================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


# =============================================================================
# Fake Supabase table API
# =============================================================================

def _coerce(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    return value


class FakeResponse:
    def __init__(self, data: list[dict]) -> None:
        self.data = data


class FakeQuery:
    """Chainable subset of the postgrest request builder."""

    def __init__(self, client: "FakeSupabaseClient", table: str) -> None:
        self._client = client
        self._table = table
        self._op = "select"
        self._payload: dict = {}
        self._filters: list[Callable[[dict], bool]] = []
        self._negate_next = False
        self._order: Optional[tuple[str, bool]] = None
        self._range: Optional[tuple[int, int]] = None
        self._limit: Optional[int] = None

    def _add(self, column: str, predicate: Callable[[Any], bool]) -> "FakeQuery":
        negate, self._negate_next = self._negate_next, False
        if negate:
            self._filters.append(lambda row: not predicate(row.get(column)))
        else:
            self._filters.append(lambda row: predicate(row.get(column)))
        return self

    def select(self, *columns: str) -> "FakeQuery":
        self._op = "select"
        return self

    def update(self, payload: dict) -> "FakeQuery":
        self._op = "update"
        self._payload = dict(payload)
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        return self._add(column, lambda v: v == value)

    def is_(self, column: str, value: Any) -> "FakeQuery":
        if value == "null":
            return self._add(column, lambda v: v is None)
        return self._add(column, lambda v: v == value)

    def gt(self, column: str, value: Any) -> "FakeQuery":
        return self._add(column, lambda v: v is not None and _coerce(v) > _coerce(value))

    def lt(self, column: str, value: Any) -> "FakeQuery":
        return self._add(column, lambda v: v is not None and _coerce(v) < _coerce(value))

    @property
    def not_(self) -> "FakeQuery":
        self._negate_next = True
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self._order = (column, desc)
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self._range = (start, end)
        return self

    def limit(self, size: int) -> "FakeQuery":
        self._limit = size
        return self

    def execute(self) -> FakeResponse:
        client = self._client
        with client.lock:
            client.requests.append((self._table, self._op))
            failure = client.failures.get(self._table)
            if failure is not None:
                raise failure
            if self._table in client.missing_tables:
                raise APIError({
                    "message": f'relation "public.{self._table}" does not exist',
                    "code": "42P01",
                    "hint": None,
                    "details": None,
                })
            rows = client.tables.setdefault(self._table, [])
            matched = [row for row in rows if all(f(row) for f in self._filters)]

            if self._op == "update":
                for row in matched:
                    row.update(self._payload)
                return FakeResponse([dict(row) for row in matched])

            if self._order is not None:
                column, desc = self._order
                matched.sort(key=lambda row: _coerce(row.get(column)) or EPOCH, reverse=desc)
            if self._range is not None:
                start, end = self._range
                matched = matched[start:end + 1]
            if self._limit is not None:
                matched = matched[:self._limit]
            return FakeResponse([dict(row) for row in matched])


class FakeSupabaseClient:
    """In-memory tables; every request executes atomically under one lock."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.tables: dict[str, list[dict]] = {"invitation_codes": [], "user_profiles": []}
        self.missing_tables: set[str] = set()
        self.failures: dict[str, BaseException] = {}
        self.requests: list[tuple[str, str]] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def add_code(self, code: str, **overrides: Any) -> dict:
        row = {
            "id": len(self.tables["invitation_codes"]) + 1,
            "code": code,
            "is_active": True,
            "created_at": EPOCH.isoformat(),
            "expires_at": (EPOCH + timedelta(days=30)).isoformat(),
            "used_at": None,
            "used_by": None,
            "used_by_profile_id": None,
            "current_uses": 0,
            "max_uses": 1,
            "ad_watch_id": None,
            "generated_by": None,
        }
        row.update(overrides)
        self.tables["invitation_codes"].append(row)
        return row

    def code_row(self, code: str) -> dict:
        return next(r for r in self.tables["invitation_codes"] if r["code"] == code)


# =============================================================================
# Fake identity provider
# =============================================================================

class FakeIdentityProvider:
    """Scriptable ``IdentityProvider``.

    ``errors`` maps an operation name to the exception it should raise.
    ``emit`` pushes an auth event to subscribers like Supabase would.
    """

    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, IdentityUser]] = {}
        self.current: Optional[IdentityUser] = None
        self.errors: dict[str, BaseException] = {}
        self.require_confirmation = False
        self.calls: list[str] = []
        self.callbacks: list[Callable[[str, Optional[IdentityUser]], None]] = []
        self.get_user_hook: Optional[Callable[[], None]] = None
        self.redirects: dict[str, Optional[str]] = {}

    @property
    def is_configured(self) -> bool:
        return True

    def add_account(self, email: str, password: str, **metadata: Any) -> IdentityUser:
        user = IdentityUser(
            id=f"uid-{email.split('@')[0]}",
            email=email,
            user_metadata=metadata,
            email_confirmed_at=EPOCH,
            created_at=EPOCH,
            updated_at=EPOCH,
        )
        self.accounts[email] = (password, user)
        return user

    def _maybe_fail(self, operation: str) -> None:
        self.calls.append(operation)
        error = self.errors.get(operation)
        if error is not None:
            raise error

    def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        self._maybe_fail("sign_in_with_password")
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise ProviderError(
                "Invalid login credentials", provider_code="invalid_credentials", status=400,
            )
        self.current = account[1]
        for callback in list(self.callbacks):
            callback("SIGNED_IN", self.current)
        return IdentitySession(user=self.current, has_session=True, access_token="token")

    def sign_up(
        self, email: str, password: str, redirect_to: Optional[str] = None,
    ) -> IdentitySession:
        self._maybe_fail("sign_up")
        self.redirects["sign_up"] = redirect_to
        if email in self.accounts:
            raise ProviderError("User already registered", status=422)
        user = self.add_account(email, password)
        if self.require_confirmation:
            return IdentitySession(user=user, has_session=False)
        self.current = user
        return IdentitySession(user=user, has_session=True, access_token="token")

    def sign_out(self) -> None:
        self._maybe_fail("sign_out")
        self.current = None

    def get_user(self) -> Optional[IdentityUser]:
        self._maybe_fail("get_user")
        if self.get_user_hook is not None:
            self.get_user_hook()
        return self.current

    def on_auth_state_change(self, callback):
        self.callbacks.append(callback)
        return lambda: self.callbacks.remove(callback)

    def update_password(self, new_password: str) -> None:
        self._maybe_fail("update_password")

    def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        self._maybe_fail("reset_password_for_email")
        self.redirects["reset_password_for_email"] = redirect_to

    def emit(self, event: str, user: Optional[IdentityUser]) -> None:
        for callback in list(self.callbacks):
            callback(event, user)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name="appfun.tests")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db(tmp_path: Path, logger: StructuredLogger):
    manager = DatabaseManager(
        supabase_url="",
        supabase_key="",
        sqlite_path=tmp_path / "local.db",
        logger=logger,
    )
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def fake_supabase() -> FakeSupabaseClient:
    return FakeSupabaseClient()


@pytest.fixture
def online_db(tmp_path: Path, logger: StructuredLogger, fake_supabase: FakeSupabaseClient):
    manager = DatabaseManager(
        supabase_url="",
        supabase_key="",
        sqlite_path=tmp_path / "online.db",
        logger=logger,
        client=fake_supabase,
    )
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def storage(db: DatabaseManager, logger: StructuredLogger) -> LocalStorage:
    return LocalStorage(db=db, logger=logger)


@pytest.fixture
def salt_path(tmp_path: Path) -> Path:
    return tmp_path / "salt.bin"


@pytest.fixture
def make_store(storage: LocalStorage, logger: StructuredLogger, salt_path: Path, clock: FakeClock):
    def _make(**overrides: Any) -> SessionStore:
        kwargs = dict(
            storage=storage,
            logger=logger,
            salt_path=salt_path,
            kdf_iterations=TEST_KDF_ITERATIONS,
            clock=clock,
        )
        kwargs.update(overrides)
        return SessionStore(**kwargs)

    return _make


@pytest.fixture
def store(make_store) -> SessionStore:
    return make_store()


@pytest.fixture
def provider() -> FakeIdentityProvider:
    fake = FakeIdentityProvider()
    fake.add_account("alice@example.com", "secret-pass", username="alice", full_name="Alice Liddell")
    return fake


@pytest.fixture
def review_policy(storage: LocalStorage) -> ReviewModePolicy:
    return ReviewModePolicy(
        enabled=False,
        allow_paths=AppConfig().ALLOW_ANONYMOUS_PATHS,
        storage=storage,
    )


@pytest.fixture
def make_manager(provider, store, review_policy, logger, clock):
    def _make(**overrides: Any) -> AuthStateManager:
        kwargs = dict(
            provider=provider,
            store=store,
            review_policy=review_policy,
            logger=logger,
            site_url="https://appfun.test",
            clock=clock,
        )
        kwargs.update(overrides)
        return AuthStateManager(**kwargs)

    return _make


@pytest.fixture
def manager(make_manager) -> AuthStateManager:
    auth = make_manager()
    auth.initialize()
    yield auth
    auth.shutdown()


@pytest.fixture
def invitation_service(online_db, logger, clock) -> InvitationService:
    return InvitationService(
        repository=InvitationRepository(db=online_db, logger=logger),
        logger=logger,
        test_codes=AppConfig().INVITATION_TEST_CODES,
        clock=clock,
    )
