"""
Authentication Pipeline Models.

Pydantic models and enumerations for the request/result contracts
between ``AuthStateManager`` and its callers (page bootstrap, API).

Every auth operation returns a structured, inspectable result rather
than raw strings or exception side-channels.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel

from appfun.models.session import SessionRecord


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """Exhaustive enumeration of authentication error categories."""

    NOT_CONFIGURED = "not_configured"
    NETWORK_ERROR = "network_error"
    TIMEOUT_ERROR = "timeout_error"
    VALIDATION_ERROR = "validation_error"
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_CONFIRMED = "email_not_confirmed"
    EMAIL_ALREADY_EXISTS = "email_already_exists"
    WEAK_PASSWORD = "weak_password"
    RATE_LIMITED = "rate_limited"
    SESSION_EXPIRED = "session_expired"
    UNKNOWN_ERROR = "unknown_error"


# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------

MSG_INVALID_CREDENTIALS: str = "Incorrect email or password. Please check and try again."
MSG_EMAIL_NOT_CONFIRMED: str = (
    "Your email has not been verified yet. "
    "Please open the confirmation link we sent you."
)
MSG_RATE_LIMITED: str = "Too many requests. Please try again later."
MSG_EMAIL_ALREADY_EXISTS: str = (
    "This email is already registered. Sign in or use another email."
)
MSG_WEAK_PASSWORD: str = (
    "The password does not meet the requirements. Use 8 to 16 characters."
)
MSG_NOT_CONFIGURED: str = "Authentication provider unavailable: Supabase is not configured."
MSG_NETWORK: str = "Network connection failed. Please check your connection."
MSG_TIMEOUT: str = "The request timed out. Please try again."
MSG_UNKNOWN: str = "An unexpected error occurred. Please try again later."
MSG_SESSION_EXPIRED: str = "Your session has expired. Please sign in again."
MSG_CHECK_EMAIL: str = (
    "Registration successful. Please check your email to confirm your account."
)


# ---------------------------------------------------------------------------
# Provider error mapping
# ---------------------------------------------------------------------------

# Structured error identifiers, checked first.
PROVIDER_CODE_MAP: dict[str, tuple[AuthErrorCode, str]] = {
    "invalid_credentials": (AuthErrorCode.INVALID_CREDENTIALS, MSG_INVALID_CREDENTIALS),
    "invalid_grant": (AuthErrorCode.INVALID_CREDENTIALS, MSG_INVALID_CREDENTIALS),
    "email_not_confirmed": (AuthErrorCode.EMAIL_NOT_CONFIRMED, MSG_EMAIL_NOT_CONFIRMED),
    "over_request_rate_limit": (AuthErrorCode.RATE_LIMITED, MSG_RATE_LIMITED),
    "over_email_send_rate_limit": (AuthErrorCode.RATE_LIMITED, MSG_RATE_LIMITED),
    "user_already_exists": (AuthErrorCode.EMAIL_ALREADY_EXISTS, MSG_EMAIL_ALREADY_EXISTS),
    "email_exists": (AuthErrorCode.EMAIL_ALREADY_EXISTS, MSG_EMAIL_ALREADY_EXISTS),
    "weak_password": (AuthErrorCode.WEAK_PASSWORD, MSG_WEAK_PASSWORD),
}

# Lower-cased message fragments, checked when no structured code matched.
PROVIDER_MESSAGE_MAP: dict[str, tuple[AuthErrorCode, str]] = {
    "invalid login credentials": (AuthErrorCode.INVALID_CREDENTIALS, MSG_INVALID_CREDENTIALS),
    "email not confirmed": (AuthErrorCode.EMAIL_NOT_CONFIRMED, MSG_EMAIL_NOT_CONFIRMED),
    "too many requests": (AuthErrorCode.RATE_LIMITED, MSG_RATE_LIMITED),
    "rate limit": (AuthErrorCode.RATE_LIMITED, MSG_RATE_LIMITED),
    "user already registered": (AuthErrorCode.EMAIL_ALREADY_EXISTS, MSG_EMAIL_ALREADY_EXISTS),
    "password should be at least": (AuthErrorCode.WEAK_PASSWORD, MSG_WEAK_PASSWORD),
}


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single client-side field validation check.

    Attributes
    ----------
    is_valid:
        ``True`` when the value passes the validation rule.
    error_message:
        Human-readable description of the failure, or ``None`` on success.
    """

    is_valid: bool
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Unified auth response
# ---------------------------------------------------------------------------

class AuthResult(BaseModel):
    """Unified response for every ``AuthStateManager`` operation.

    Attributes
    ----------
    success:
        ``True`` when the operation completed without error.
    error_code:
        Structured error category (``None`` on success).
    error_message:
        Human-readable error description (``None`` on success).
    message:
        Informational message for successful operations that need
        follow-up from the user (e.g. "check your email").
    user:
        Session record established by the operation, if any.
    requires_email_confirmation:
        ``True`` when sign-up succeeded but no session was issued.
    """

    success: bool
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None
    message: Optional[str] = None
    user: Optional[SessionRecord] = None
    requires_email_confirmation: bool = False

    model_config = {"from_attributes": True}

    @classmethod
    def failure(cls, error_code: AuthErrorCode, error_message: str) -> "AuthResult":
        """Shorthand for a failed result."""
        return cls(success=False, error_code=error_code, error_message=error_message)
