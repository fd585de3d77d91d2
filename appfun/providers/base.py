"""
Identity Provider capability.

The auth manager depends only on this protocol.  Implementations report
failure by raising:

- ``ProviderError`` for domain errors reported by the provider
  (bad credentials, already registered, rate limited ...).
- ``ProviderUnavailableError`` when no provider is configured.
- ``TimeoutError`` when the bounded request timeout elapses.
- ``ConnectionError`` when the provider cannot be reached.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol

from appfun.models.session import IdentitySession, IdentityUser

# (event name, user or None) -- event names follow Supabase: SIGNED_IN,
# SIGNED_OUT, TOKEN_REFRESHED, USER_UPDATED, PASSWORD_RECOVERY ...
AuthEventCallback = Callable[[str, Optional[IdentityUser]], None]
Unsubscribe = Callable[[], None]


class IdentityProvider(Protocol):
    """External service of record for credentials and identity."""

    @property
    def is_configured(self) -> bool: ...

    def sign_in_with_password(self, email: str, password: str) -> IdentitySession: ...

    def sign_up(
        self, email: str, password: str, redirect_to: Optional[str] = None,
    ) -> IdentitySession: ...

    def sign_out(self) -> None: ...

    def get_user(self) -> Optional[IdentityUser]:
        """Return the current identity, or ``None`` when there is none."""
        ...

    def on_auth_state_change(self, callback: AuthEventCallback) -> Unsubscribe: ...

    def update_password(self, new_password: str) -> None: ...

    def reset_password_for_email(
        self, email: str, redirect_to: Optional[str] = None,
    ) -> None: ...
