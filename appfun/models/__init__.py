"""
Data Models Package.

Re-exports all Pydantic models for convenient imports:
    from appfun.models import SessionRecord, AuthState, AuthResult
    from appfun.models import InvitationCode, InvitationValidation
"""

from __future__ import annotations

from appfun.models.session import (
    AuthState,
    IdentitySession,
    IdentityUser,
    PageContext,
    SessionRecord,
    StoredAuthData,
)
from appfun.models.auth_models import AuthErrorCode, AuthResult, ValidationResult
from appfun.models.invitation import (
    InvitationCode,
    InvitationErrorCode,
    InvitationListing,
    InvitationRedemption,
    InvitationStatusFilter,
    InvitationValidation,
)

__all__ = [
    "AuthState",
    "IdentitySession",
    "IdentityUser",
    "PageContext",
    "SessionRecord",
    "StoredAuthData",
    "AuthErrorCode",
    "AuthResult",
    "ValidationResult",
    "InvitationCode",
    "InvitationErrorCode",
    "InvitationListing",
    "InvitationRedemption",
    "InvitationStatusFilter",
    "InvitationValidation",
]
