"""
Provider error translation.

The one place where identity-provider failures are mapped onto
``AuthErrorCode`` and a fixed user-facing message.  Structured provider
codes are preferred; message fragments are the fallback; anything
unmatched keeps the provider's own message.
"""

from __future__ import annotations

from appfun.exceptions import ProviderError, ProviderUnavailableError
from appfun.models.auth_models import (
    MSG_NETWORK,
    MSG_NOT_CONFIGURED,
    MSG_RATE_LIMITED,
    MSG_TIMEOUT,
    MSG_UNKNOWN,
    PROVIDER_CODE_MAP,
    PROVIDER_MESSAGE_MAP,
    AuthErrorCode,
    AuthResult,
)


def translate_provider_error(exc: BaseException) -> AuthResult:
    """Map an exception raised by an ``IdentityProvider`` to a failed ``AuthResult``."""
    if isinstance(exc, ProviderUnavailableError):
        return AuthResult.failure(AuthErrorCode.NOT_CONFIGURED, MSG_NOT_CONFIGURED)

    # TimeoutError is an OSError; check it before ConnectionError.
    if isinstance(exc, TimeoutError):
        return AuthResult.failure(AuthErrorCode.TIMEOUT_ERROR, MSG_TIMEOUT)

    if isinstance(exc, (ConnectionError, OSError)):
        return AuthResult.failure(AuthErrorCode.NETWORK_ERROR, MSG_NETWORK)

    if isinstance(exc, ProviderError):
        if exc.provider_code and exc.provider_code in PROVIDER_CODE_MAP:
            code, message = PROVIDER_CODE_MAP[exc.provider_code]
            return AuthResult.failure(code, message)

        lowered = exc.message.lower()
        for fragment, (code, message) in PROVIDER_MESSAGE_MAP.items():
            if fragment in lowered:
                return AuthResult.failure(code, message)

        if exc.status == 429:
            return AuthResult.failure(AuthErrorCode.RATE_LIMITED, MSG_RATE_LIMITED)

        return AuthResult.failure(AuthErrorCode.UNKNOWN_ERROR, exc.message or MSG_UNKNOWN)

    return AuthResult.failure(AuthErrorCode.UNKNOWN_ERROR, MSG_UNKNOWN)
