"""
Exception Hierarchy.

Exceptions raised *inside* the auth core.  Public service operations
never let these escape: ``AuthStateManager`` and ``InvitationService``
translate them into typed result models at their boundary.  The API
layer maps any ``AppFunError`` that reaches it to a JSON response.
"""

from __future__ import annotations

from typing import Optional


class AppFunError(Exception):
    """Base exception for the APPFUN auth core.

    Carries an HTTP status so the API exception handler can render it
    without knowing the concrete subclass.
    """

    def __init__(
        self,
        message: str,
        code: str = "APPFUN_ERROR",
        status_code: int = 500,
    ) -> None:
        super().__init__(message)
        self.message: str = message
        self.code: str = code
        self.status_code: int = status_code

    def to_dict(self) -> dict[str, str]:
        """Convert the exception to an API response body."""
        return {"error": self.message, "code": self.code}


class ProviderError(AppFunError):
    """Domain error reported by the identity provider.

    ``provider_code`` holds the provider's structured error identifier
    (e.g. ``invalid_credentials``) when it exposes one.
    """

    def __init__(
        self,
        message: str,
        provider_code: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message, code="PROVIDER_ERROR", status_code=status or 400)
        self.provider_code: Optional[str] = provider_code
        self.status: Optional[int] = status


class ProviderUnavailableError(RuntimeError):
    """The identity provider is not configured for this deployment.

    Subclasses ``RuntimeError`` like ``DatabaseManager.supabase`` does so
    offline fallbacks can catch both the same way.
    """


class InvitationStoreMissingError(AppFunError):
    """The ``invitation_codes`` relation does not exist (not migrated)."""

    def __init__(self, message: str = "invitation_codes relation does not exist") -> None:
        super().__init__(message, code="STORE_MISSING", status_code=503)


class InvitationStoreError(AppFunError):
    """Any other failure talking to the invitation store."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="STORE_ERROR", status_code=500)


class InvitationStoreOfflineError(AppFunError):
    """Supabase is not configured, so there is no invitation store."""

    def __init__(self, message: str = "invitation store is not configured") -> None:
        super().__init__(message, code="STORE_OFFLINE", status_code=503)
