"""
Auth State Manager.

Owns the in-memory ``AuthState`` for this process and is the only writer
of the persisted session record.  Combines three sources of truth:

1. the ``SessionStore`` (restored synchronously on ``initialize``),
2. the ``IdentityProvider`` (reconciled after restore, plus push events),
3. the ``ReviewModePolicy`` override, which never touches either of the
   above.

Every public operation returns a value and never raises.  Provider
failures are translated into ``AuthResult`` objects in one place
(``translate_provider_error``).

Threading model
---------------
All state changes happen under a single ``RLock``.  A transition
persists first, then updates memory, then notifies subscribers, all
before the lock is released, so subscribers see transitions in order.
Provider calls run *outside* the lock.  A generation counter, bumped on
every transition, lets a slow call (reconcile, expiry eviction) detect
that a newer transition already happened and discard its own result.
"""

from __future__ import annotations

import re
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from appfun.exceptions import ProviderUnavailableError
from appfun.logger import StructuredLogger
from appfun.models.auth_models import (
    MSG_CHECK_EMAIL,
    MSG_NOT_CONFIGURED,
    MSG_SESSION_EXPIRED,
    MSG_UNKNOWN,
    AuthErrorCode,
    AuthResult,
    ValidationResult,
)
from appfun.models.session import AuthState, IdentityUser, PageContext, SessionRecord
from appfun.providers.base import IdentityProvider, Unsubscribe
from appfun.services.base_service import BaseService
from appfun.services.error_translation import translate_provider_error
from appfun.services.review_mode import ReviewModePolicy, reviewer_identity
from appfun.services.session_store import SessionStore

_EMAIL_RE: re.Pattern[str] = re.compile(
    r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$"
)

SIGN_IN_MIN_PASSWORD: int = 6
NEW_PASSWORD_MIN: int = 8
NEW_PASSWORD_MAX: int = 16

StateListener = Callable[[AuthState], None]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class AuthStateManager(BaseService):
    """Authoritative auth state for one process.

    Parameters
    ----------
    provider:
        The identity provider (Supabase or offline).
    store:
        Persisted session store.
    review_policy:
        Under-review anonymous-access policy.
    logger:
        A ``StructuredLogger`` instance.
    session_duration:
        Lifetime of a session without "remember me".
    remember_me_duration:
        Lifetime of a "remember me" session.
    renewal_threshold:
        ``refresh()`` only re-stamps when less than this much time is left.
    site_url:
        Origin used to build confirmation and password-reset links.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        store: SessionStore,
        review_policy: ReviewModePolicy,
        logger: StructuredLogger,
        session_duration: timedelta = timedelta(hours=24),
        remember_me_duration: timedelta = timedelta(days=7),
        renewal_threshold: timedelta = timedelta(hours=24),
        site_url: str = "",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        super().__init__(logger)
        self._provider: IdentityProvider = provider
        self._store: SessionStore = store
        self._review: ReviewModePolicy = review_policy
        self._session_duration: timedelta = session_duration
        self._remember_me_duration: timedelta = remember_me_duration
        self._renewal_threshold: timedelta = renewal_threshold
        self._site_url: str = site_url.rstrip("/")
        self._clock: Callable[[], datetime] = clock

        self._lock: threading.RLock = threading.RLock()
        self._state: AuthState = AuthState(is_loading=True)
        self._generation: int = 0
        self._ops_in_flight: int = 0
        self._listeners: list[StateListener] = []
        self._provider_unsubscribe: Optional[Unsubscribe] = None

    # ==================================================================
    # Validation helpers
    # ==================================================================

    @staticmethod
    def normalize_email(email: str) -> str:
        """Normalise an email address: strip whitespace and lowercase."""
        return (email or "").strip().lower()

    @staticmethod
    def validate_email(email: str) -> ValidationResult:
        if not email or not email.strip():
            return ValidationResult(is_valid=False, error_message="Email address is required.")
        if not _EMAIL_RE.match(email.strip()):
            return ValidationResult(
                is_valid=False, error_message="Please enter a valid email address.",
            )
        return ValidationResult(is_valid=True)

    @staticmethod
    def validate_sign_in_password(password: str) -> ValidationResult:
        if not password:
            return ValidationResult(is_valid=False, error_message="Password is required.")
        if len(password) < SIGN_IN_MIN_PASSWORD:
            return ValidationResult(
                is_valid=False,
                error_message=f"Password must be at least {SIGN_IN_MIN_PASSWORD} characters.",
            )
        return ValidationResult(is_valid=True)

    @staticmethod
    def validate_new_password(password: str) -> ValidationResult:
        """Enforce the account password policy: 8 to 16 characters inclusive."""
        length = len(password or "")
        if length < NEW_PASSWORD_MIN or length > NEW_PASSWORD_MAX:
            return ValidationResult(
                is_valid=False,
                error_message=(
                    f"Password must be between {NEW_PASSWORD_MIN} and "
                    f"{NEW_PASSWORD_MAX} characters."
                ),
            )
        return ValidationResult(is_valid=True)

    # ==================================================================
    # Lifecycle
    # ==================================================================

    def initialize(self) -> AuthState:
        """Restore from the store, then reconcile with the provider.

        A still-valid local record is kept whenever the provider is
        unreachable, unconfigured or simply has no session of its own.
        """
        with self._lock:
            record: Optional[SessionRecord] = self._store.load()
            self._state = AuthState(is_logged_in=record is not None, user=record)
            self._generation += 1
            generation: int = self._generation
            self._notify_locked()

            if self._provider_unsubscribe is None:
                try:
                    self._provider_unsubscribe = self._provider.on_auth_state_change(
                        self._on_provider_event
                    )
                except Exception as exc:
                    self._logger.warning("Could not subscribe to provider events: %s", exc)

        if record is not None:
            self._logger.info(
                "Session restored for %s.", record.email,
                extra={"event": "SESSION_RESTORED", "email": record.email},
            )

        try:
            identity: Optional[IdentityUser] = self._provider.get_user()
        except ProviderUnavailableError:
            if record is None:
                self._apply(None, error=MSG_NOT_CONFIGURED, expected_generation=generation)
            return self.get_state()
        except Exception as exc:
            self._logger.warning(
                "Reconciliation with identity provider failed: %s", exc,
                extra={"event": "RECONCILE_FAILED"},
            )
            return self.get_state()

        if identity is None:
            self._logger.debug("Identity provider reports no session; keeping local state.")
        elif record is None or record.auth_user_id != identity.id:
            reconciled = self._build_record(identity, remember_me=False)
            if self._apply(reconciled, expected_generation=generation):
                self._logger.info(
                    "Session reconciled from provider for %s.", reconciled.email,
                    extra={"event": "SESSION_RECONCILED", "email": reconciled.email},
                )
        return self.get_state()

    def shutdown(self) -> None:
        """Detach from provider push events."""
        with self._lock:
            unsubscribe, self._provider_unsubscribe = self._provider_unsubscribe, None
        if unsubscribe is not None:
            try:
                unsubscribe()
            except Exception as exc:
                self._logger.warning("Provider unsubscribe failed: %s", exc)

    # ==================================================================
    # State access
    # ==================================================================

    def get_state(self) -> AuthState:
        """Return a defensive copy of the current state."""
        with self._lock:
            return self._state.model_copy(deep=True)

    def subscribe(self, listener: StateListener) -> Unsubscribe:
        """Register *listener* for every transition; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def on_auth_state_change(
        self, callback: Callable[[bool, Optional[SessionRecord]], None],
    ) -> Unsubscribe:
        """Subscribe with a ``callback(is_logged_in, user)`` signature."""
        return self.subscribe(lambda state: callback(state.is_logged_in, state.user))

    # ==================================================================
    # Sign-in / sign-up / sign-out
    # ==================================================================

    def sign_in(self, email: str, password: str, remember_me: bool = False) -> AuthResult:
        """Authenticate with email and password.

        Input is validated locally before any provider call.  On failure
        the current state is left untouched.
        """
        email_check = self.validate_email(email)
        if not email_check.is_valid:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, email_check.error_message or "")
        password_check = self.validate_sign_in_password(password)
        if not password_check.is_valid:
            return AuthResult.failure(
                AuthErrorCode.VALIDATION_ERROR, password_check.error_message or "",
            )

        email = self.normalize_email(email)
        self._begin_op()
        try:
            session = self._provider.sign_in_with_password(email, password)
        except Exception as exc:
            result = translate_provider_error(exc)
            self._logger.warning(
                "Sign-in failed for %s: %s", email, exc,
                extra={"event": "SIGN_IN_FAILED", "error_code": str(result.error_code)},
            )
            return result
        finally:
            self._end_op()

        if session.user is None:
            self._logger.error("Provider returned no user for %s.", email)
            return AuthResult.failure(AuthErrorCode.UNKNOWN_ERROR, MSG_UNKNOWN)

        record = self._build_record(session.user, remember_me=remember_me)
        self._apply(record)
        self._logger.info(
            "User signed in: %s", record.email,
            extra={"event": "SIGN_IN", "email": record.email, "remember_me": remember_me},
        )
        return AuthResult(success=True, user=record)

    def sign_up(
        self,
        email: str,
        password: str,
        confirm_password: Optional[str] = None,
    ) -> AuthResult:
        """Register a new account.

        When the provider withholds a session pending email
        confirmation the user is *not* logged in and the result carries
        ``requires_email_confirmation=True``.
        """
        email_check = self.validate_email(email)
        if not email_check.is_valid:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, email_check.error_message or "")
        password_check = self.validate_new_password(password)
        if not password_check.is_valid:
            return AuthResult.failure(
                AuthErrorCode.VALIDATION_ERROR, password_check.error_message or "",
            )
        if confirm_password is not None and confirm_password != password:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, "Passwords do not match.")

        email = self.normalize_email(email)
        self._begin_op()
        try:
            session = self._provider.sign_up(
                email, password, redirect_to=f"{self._site_url}/auth/confirm",
            )
        except Exception as exc:
            result = translate_provider_error(exc)
            self._logger.warning(
                "Sign-up failed for %s: %s", email, exc,
                extra={"event": "SIGN_UP_FAILED", "error_code": str(result.error_code)},
            )
            return result
        finally:
            self._end_op()

        if not session.has_session or session.user is None:
            self._logger.info(
                "User registered, awaiting email confirmation: %s", email,
                extra={"event": "SIGN_UP", "email": email, "confirmed": False},
            )
            return AuthResult(
                success=True, message=MSG_CHECK_EMAIL, requires_email_confirmation=True,
            )

        record = self._build_record(session.user, remember_me=False)
        self._apply(record)
        self._logger.info(
            "User registered and signed in: %s", record.email,
            extra={"event": "SIGN_UP", "email": record.email, "confirmed": True},
        )
        return AuthResult(success=True, user=record)

    def sign_out(self) -> AuthResult:
        """End the session locally, whatever the provider answers."""
        with self._lock:
            user = self._state.user
        email = user.email if user is not None else "unknown"

        self._begin_op()
        try:
            self._provider.sign_out()
        except ProviderUnavailableError:
            self._logger.debug("Offline; skipping provider sign-out for %s.", email)
        except Exception as exc:
            self._logger.warning("Provider sign-out failed for %s: %s", email, exc)
        finally:
            self._end_op()

        self._apply(None)
        self._logger.info(
            "User signed out: %s", email, extra={"event": "SIGN_OUT", "email": email},
        )
        return AuthResult(success=True)

    # ==================================================================
    # Password management
    # ==================================================================

    def reset_password(self, email: str) -> AuthResult:
        email_check = self.validate_email(email)
        if not email_check.is_valid:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, email_check.error_message or "")

        email = self.normalize_email(email)
        try:
            self._provider.reset_password_for_email(
                email, redirect_to=f"{self._site_url}/auth/update-password",
            )
        except Exception as exc:
            self._logger.warning("Password reset request failed for %s: %s", email, exc)
            return translate_provider_error(exc)

        self._logger.info(
            "Password reset requested for %s.", email,
            extra={"event": "PASSWORD_RESET_REQUESTED", "email": email},
        )
        return AuthResult(
            success=True, message="Password reset email sent. Please check your inbox.",
        )

    def update_password(self, new_password: str) -> AuthResult:
        password_check = self.validate_new_password(new_password)
        if not password_check.is_valid:
            return AuthResult.failure(
                AuthErrorCode.VALIDATION_ERROR, password_check.error_message or "",
            )
        try:
            self._provider.update_password(new_password)
        except Exception as exc:
            self._logger.warning("Password update failed: %s", exc)
            return translate_provider_error(exc)

        self._logger.info("Password updated.", extra={"event": "PASSWORD_UPDATED"})
        return AuthResult(success=True, message="Password updated successfully.")

    # ==================================================================
    # Validity & refresh
    # ==================================================================

    def is_valid(self) -> bool:
        """``True`` when logged in and not yet expired.

        An expired session is signed out as a side effect.
        """
        with self._lock:
            user = self._state.user
            if not self._state.is_logged_in or user is None:
                return False
            if self._clock() < user.expires_at:
                return True
            generation = self._generation
        self._expire(generation)
        return False

    def is_logged_in(self) -> bool:
        return self.is_valid()

    def refresh(self) -> bool:
        """Extend a valid session whose remaining lifetime is below the threshold.

        Never resurrects an expired or absent session.  Returns whether
        a valid session exists afterwards.
        """
        with self._lock:
            user = self._state.user
            if not self._state.is_logged_in or user is None:
                return False
            now = self._clock()
            if now < user.expires_at:
                if user.expires_at - now < self._renewal_threshold:
                    renewed = user.model_copy(
                        update={"expires_at": now + self._duration(user.remember_me)}
                    )
                    self._apply(renewed)
                    self._logger.debug(
                        "Session refreshed for %s until %s.",
                        renewed.email, renewed.expires_at.isoformat(),
                        extra={"event": "SESSION_REFRESHED"},
                    )
                return True
            generation = self._generation
        self._expire(generation)
        return False

    # ==================================================================
    # Under-review override
    # ==================================================================

    def is_under_review(self, context: Optional[PageContext] = None) -> bool:
        return self._review.is_under_review(context)

    def is_review_access(self, context: Optional[PageContext]) -> bool:
        """``True`` when the under-review override applies to *context*."""
        return self._review.applies(context)

    def effective_state(self, context: Optional[PageContext] = None) -> AuthState:
        """The state a page should render: the review override, or ``get_state()``."""
        if self._review.applies(context):
            return AuthState(is_logged_in=True, user=reviewer_identity(self._clock()))
        return self.get_state()

    def check_download_permission(self, context: Optional[PageContext] = None) -> bool:
        if self.is_under_review(context):
            return True
        return self.is_valid()

    # ==================================================================
    # Private helpers
    # ==================================================================

    def _duration(self, remember_me: bool) -> timedelta:
        return self._remember_me_duration if remember_me else self._session_duration

    def _build_record(self, identity: IdentityUser, remember_me: bool) -> SessionRecord:
        now = self._clock()
        metadata = identity.user_metadata or {}
        email = identity.email or ""
        return SessionRecord(
            id=identity.id,
            auth_user_id=identity.id,
            email=email,
            username=metadata.get("username") or email.split("@")[0] or "User",
            full_name=metadata.get("full_name") or "",
            avatar=metadata.get("avatar_url") or "",
            email_confirmed_at=identity.email_confirmed_at,
            created_at=identity.created_at,
            updated_at=identity.updated_at,
            login_time=now,
            expires_at=now + self._duration(remember_me),
            logged_in=True,
            remember_me=remember_me,
        )

    def _apply(
        self,
        record: Optional[SessionRecord],
        error: Optional[str] = None,
        expected_generation: Optional[int] = None,
    ) -> bool:
        """Persist, update memory and notify, as one transition.

        Returns ``False`` (and changes nothing) when *expected_generation*
        is given and a newer transition has already happened.
        """
        with self._lock:
            if expected_generation is not None and expected_generation != self._generation:
                self._logger.debug("Discarding stale transition (generation moved on).")
                return False

            if record is not None:
                if not self._store.save(record):
                    self._logger.warning(
                        "Session for %s could not be persisted; it will not "
                        "survive a restart.", record.email,
                    )
            else:
                self._store.clear()

            self._state = AuthState(
                is_logged_in=record is not None, user=record, is_loading=False, error=error,
            )
            self._generation += 1
            self._notify_locked()
            return True

    def _expire(self, generation: int) -> None:
        if not self._apply(None, error=MSG_SESSION_EXPIRED, expected_generation=generation):
            return
        self._logger.info("Session expired; signed out.", extra={"event": "SESSION_EXPIRED"})
        try:
            self._provider.sign_out()
        except ProviderUnavailableError:
            pass
        except Exception as exc:
            self._logger.warning("Provider sign-out after expiry failed: %s", exc)

    def _notify_locked(self) -> None:
        """Deliver a copy of the current state to every listener.

        Called with the lock held so deliveries follow transition order.
        """
        listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self._state.model_copy(deep=True))
            except Exception as exc:
                self._logger.error("Auth state listener failed: %s", exc, exc_info=True)

    def _begin_op(self) -> None:
        with self._lock:
            self._ops_in_flight += 1

    def _end_op(self) -> None:
        with self._lock:
            self._ops_in_flight -= 1

    def _on_provider_event(self, event: str, identity: Optional[IdentityUser]) -> None:
        """Adopt provider push events that happened outside our own calls."""
        with self._lock:
            if self._ops_in_flight:
                return
            current = self._state.user
            if event == "SIGNED_OUT":
                if current is not None:
                    self._apply(None)
                    self._logger.info(
                        "Provider signed the user out.", extra={"event": "PROVIDER_SIGNED_OUT"},
                    )
                return
            if identity is None:
                return
            if current is not None and current.auth_user_id == identity.id:
                return
            record = self._build_record(identity, remember_me=False)
            self._apply(record)
            self._logger.info(
                "Session adopted from provider push (%s) for %s.", event, record.email,
                extra={"event": "PROVIDER_SIGNED_IN", "email": record.email},
            )
