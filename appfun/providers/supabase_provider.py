"""
Supabase Identity Provider.

Adapts ``supabase.auth`` (supabase-py) to the ``IdentityProvider``
protocol.  Every call runs on a small worker pool and is bounded by
``request_timeout``; the caller gets a ``TimeoutError`` when it elapses
even if the underlying HTTP request is still in flight.
"""

from __future__ import annotations

import concurrent.futures
import threading
from typing import Any, Callable, Optional, TypeVar

import httpx
from supabase import AuthError, AuthSessionMissingError
from supabase import Client as SupabaseClient

from appfun.exceptions import ProviderError
from appfun.logger import StructuredLogger
from appfun.models.session import IdentitySession, IdentityUser
from appfun.providers.base import AuthEventCallback, Unsubscribe

T = TypeVar("T")


def to_identity_user(user: Any) -> Optional[IdentityUser]:
    """Convert a supabase-py ``User`` into an ``IdentityUser``."""
    if user is None:
        return None
    return IdentityUser(
        id=str(user.id),
        email=getattr(user, "email", None),
        user_metadata=dict(getattr(user, "user_metadata", None) or {}),
        email_confirmed_at=getattr(user, "email_confirmed_at", None),
        created_at=getattr(user, "created_at", None),
        updated_at=getattr(user, "updated_at", None),
    )


def _to_identity_session(response: Any) -> IdentitySession:
    session = getattr(response, "session", None)
    return IdentitySession(
        user=to_identity_user(getattr(response, "user", None)),
        has_session=session is not None,
        access_token=getattr(session, "access_token", None),
        refresh_token=getattr(session, "refresh_token", None),
        expires_at=getattr(session, "expires_at", None),
    )


def _caused_by(exc: BaseException, kinds: tuple[type[BaseException], ...]) -> bool:
    """``True`` when *exc* or the exception it was raised from is one of *kinds*."""
    candidates = (exc, exc.__cause__, exc.__context__)
    return any(isinstance(c, kinds) for c in candidates if c is not None)


class SupabaseIdentityProvider:
    """``IdentityProvider`` backed by a supabase-py client.

    A timed-out call keeps its worker until the HTTP request returns;
    Python threads cannot be interrupted.  Once ``max_workers`` calls
    hang, new calls queue behind them and time out as well, so a
    saturated pool is logged as ``PROVIDER_POOL_SATURATED``.  A stuck
    worker is released when its HTTP request finally returns or fails.

    Parameters
    ----------
    client:
        An initialised Supabase client.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    request_timeout:
        Bound, in seconds, for every auth call.
    max_workers:
        Size of the worker pool, i.e. how many calls may hang at once
        before new ones queue.
    """

    def __init__(
        self,
        client: SupabaseClient,
        logger: StructuredLogger,
        request_timeout: float = 10.0,
        max_workers: int = 8,
    ) -> None:
        if request_timeout <= 0:
            raise ValueError("request_timeout must be a positive number of seconds")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._client: SupabaseClient = client
        self._logger: StructuredLogger = logger
        self._request_timeout: float = request_timeout
        self._max_workers: int = max_workers
        self._busy: int = 0
        self._busy_lock = threading.Lock()
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="identity",
        )

    @property
    def busy_workers(self) -> int:
        """Calls currently running or queued on the worker pool."""
        with self._busy_lock:
            return self._busy

    @property
    def is_configured(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # IdentityProvider
    # ------------------------------------------------------------------

    def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        response = self._call(
            "sign_in_with_password",
            lambda: self._client.auth.sign_in_with_password(
                {"email": email, "password": password}
            ),
        )
        return _to_identity_session(response)

    def sign_up(
        self, email: str, password: str, redirect_to: Optional[str] = None,
    ) -> IdentitySession:
        credentials: dict[str, Any] = {"email": email, "password": password}
        if redirect_to:
            credentials["options"] = {"email_redirect_to": redirect_to}
        response = self._call("sign_up", lambda: self._client.auth.sign_up(credentials))
        return _to_identity_session(response)

    def sign_out(self) -> None:
        self._call("sign_out", self._client.auth.sign_out)

    def get_user(self) -> Optional[IdentityUser]:
        try:
            response = self._call("get_user", self._client.auth.get_user)
        except ProviderError as exc:
            # No session or a rejected token both mean "no identity".
            if exc.status in (401, 403) or exc.provider_code in (
                "session_not_found", "session_missing", "bad_jwt",
            ):
                return None
            raise
        if response is None:
            return None
        return to_identity_user(getattr(response, "user", None))

    def on_auth_state_change(self, callback: AuthEventCallback) -> Unsubscribe:
        def _adapter(event: Any, session: Any) -> None:
            user = to_identity_user(getattr(session, "user", None)) if session else None
            callback(str(getattr(event, "value", event)), user)

        subscription = self._client.auth.on_auth_state_change(_adapter)
        return subscription.unsubscribe

    def update_password(self, new_password: str) -> None:
        self._call(
            "update_password",
            lambda: self._client.auth.update_user({"password": new_password}),
        )

    def reset_password_for_email(
        self, email: str, redirect_to: Optional[str] = None,
    ) -> None:
        options: dict[str, str] = {"redirect_to": redirect_to} if redirect_to else {}
        self._call(
            "reset_password_for_email",
            lambda: self._client.auth.reset_password_for_email(email, options),
        )

    def close(self) -> None:
        """Release the worker pool without waiting for stuck calls."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _submit(self, operation: str, fn: Callable[[], T]) -> concurrent.futures.Future[T]:
        def _tracked() -> T:
            try:
                return fn()
            finally:
                with self._busy_lock:
                    self._busy -= 1

        with self._busy_lock:
            saturated = self._busy >= self._max_workers
            self._busy += 1
        if saturated:
            self._logger.warning(
                "Identity worker pool saturated (%d workers busy); %s will queue.",
                self._max_workers,
                operation,
                extra={"event": "PROVIDER_POOL_SATURATED"},
            )
        try:
            return self._executor.submit(_tracked)
        except RuntimeError:
            with self._busy_lock:
                self._busy -= 1
            raise

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        """Run *fn* bounded by the request timeout, normalising failures."""
        future = self._submit(operation, fn)
        try:
            return future.result(timeout=self._request_timeout)
        except concurrent.futures.TimeoutError as exc:
            if future.cancel():
                # Still queued, so _tracked will never run.
                with self._busy_lock:
                    self._busy -= 1
            self._logger.warning(
                "Identity call %s timed out after %.1fs.",
                operation,
                self._request_timeout,
                extra={"event": "PROVIDER_TIMEOUT"},
            )
            raise TimeoutError(f"{operation} timed out") from exc
        except AuthSessionMissingError as exc:
            raise ProviderError(
                "Auth session missing!", provider_code="session_missing", status=400,
            ) from exc
        except AuthError as exc:
            if _caused_by(exc, (httpx.TimeoutException,)):
                raise TimeoutError(f"{operation} timed out") from exc
            if _caused_by(exc, (httpx.TransportError,)):
                raise ConnectionError(str(exc)) from exc
            raise ProviderError(
                getattr(exc, "message", None) or str(exc),
                provider_code=getattr(exc, "code", None),
                status=getattr(exc, "status", None),
            ) from exc
        except httpx.TimeoutException as exc:
            raise TimeoutError(f"{operation} timed out") from exc
        except httpx.TransportError as exc:
            raise ConnectionError(str(exc)) from exc
