"""
Offline Identity Provider.

Selected at construction time when Supabase is not configured.  By
default every identity operation fails closed with
``ProviderUnavailableError``.  With ``simulate=True`` (development only)
sign-in and sign-up succeed locally for any well-formed input so pages
can be exercised without a backend.
"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

from appfun.exceptions import ProviderError, ProviderUnavailableError
from appfun.logger import StructuredLogger
from appfun.models.session import IdentitySession, IdentityUser
from appfun.providers.base import AuthEventCallback, Unsubscribe

_UNAVAILABLE: str = "Supabase is not configured"


class OfflineIdentityProvider:
    """``IdentityProvider`` used when no identity backend is configured."""

    def __init__(self, logger: StructuredLogger, simulate: bool = False) -> None:
        self._logger: StructuredLogger = logger
        self._simulate: bool = simulate
        self._lock: threading.Lock = threading.Lock()
        self._current: Optional[IdentityUser] = None

        if simulate:
            self._logger.warning(
                "Offline identity simulation enabled; any well-formed "
                "credentials will be accepted."
            )

    @property
    def is_configured(self) -> bool:
        return False

    def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        if not self._simulate:
            raise ProviderUnavailableError(_UNAVAILABLE)
        if "@" not in email or len(password) < 6:
            raise ProviderError(
                "Invalid login credentials", provider_code="invalid_credentials", status=400,
            )
        return self._simulated_session(email)

    def sign_up(
        self, email: str, password: str, redirect_to: Optional[str] = None,
    ) -> IdentitySession:
        if not self._simulate:
            raise ProviderUnavailableError(_UNAVAILABLE)
        return self._simulated_session(email)

    def sign_out(self) -> None:
        with self._lock:
            self._current = None

    def get_user(self) -> Optional[IdentityUser]:
        if not self._simulate:
            raise ProviderUnavailableError(_UNAVAILABLE)
        with self._lock:
            return self._current

    def on_auth_state_change(self, callback: AuthEventCallback) -> Unsubscribe:
        # Nothing is ever pushed offline.
        return lambda: None

    def update_password(self, new_password: str) -> None:
        raise ProviderUnavailableError(_UNAVAILABLE)

    def reset_password_for_email(
        self, email: str, redirect_to: Optional[str] = None,
    ) -> None:
        raise ProviderUnavailableError(_UNAVAILABLE)

    def _simulated_session(self, email: str) -> IdentitySession:
        now = datetime.now(tz=timezone.utc)
        user = IdentityUser(
            id=f"offline-{uuid.uuid5(uuid.NAMESPACE_URL, email.lower())}",
            email=email,
            user_metadata={"full_name": "Offline User"},
            email_confirmed_at=now,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._current = user
        self._logger.info("Simulated identity issued for %s.", email)
        return IdentitySession(user=user, has_session=True)
