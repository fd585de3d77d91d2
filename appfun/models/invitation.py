"""
Invitation Code Models.

Row model for the Supabase ``invitation_codes`` table and the result
contracts returned by ``InvitationService``.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Optional, Union

from pydantic import BaseModel


class InvitationErrorCode(StrEnum):
    """Why a validation or redemption did not succeed."""

    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    DISABLED = "disabled"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    CONFLICT = "conflict"
    STORE_ERROR = "store_error"
    TIMEOUT = "timeout"


class InvitationStatusFilter(StrEnum):
    """Listing filters accepted by ``InvitationService.list_codes``."""

    ALL = "all"
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class InvitationCode(BaseModel):
    """A redeemable token.

    Invariants: ``current_uses <= max_uses``; redeemable iff active, not
    expired and not exhausted.
    """

    id: Union[int, str]
    code: str
    is_active: bool = True
    created_at: Optional[datetime] = None
    expires_at: datetime
    used_at: Optional[datetime] = None
    used_by: Optional[str] = None
    used_by_profile_id: Optional[int] = None
    current_uses: int = 0
    max_uses: int = 1
    ad_watch_id: Optional[str] = None
    generated_by: Optional[str] = None

    model_config = {"from_attributes": True}

    def rejection(self, now: datetime) -> Optional[InvitationErrorCode]:
        """Return why this code cannot be redeemed at *now*, or ``None``.

        Exhaustion is reported before deactivation: the last redemption
        deactivates the code, and callers should hear "used", not
        "disabled".
        """
        if self.current_uses >= self.max_uses:
            return InvitationErrorCode.EXHAUSTED
        if not self.is_active:
            return InvitationErrorCode.DISABLED
        if now >= self.expires_at:
            return InvitationErrorCode.EXPIRED
        return None

    def is_redeemable(self, now: datetime) -> bool:
        return self.rejection(now) is None


class InvitationValidation(BaseModel):
    """Result of ``InvitationService.validate``."""

    valid: bool
    message: str
    error_code: Optional[InvitationErrorCode] = None
    degraded: bool = False


class InvitationRedemption(BaseModel):
    """Result of ``InvitationService.redeem``."""

    success: bool
    profile_id: Optional[int] = None
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[InvitationErrorCode] = None
    degraded: bool = False


class InvitationListing(BaseModel):
    """Result of ``InvitationService.list_codes``."""

    success: bool
    invitations: list[InvitationCode] = []
    total: int = 0
    message: Optional[str] = None
    error: Optional[str] = None
    degraded: bool = False
