"""
HTTP request and response bodies.

Field names on the wire are camelCase where the browser client expects
them (``userId``, ``profileId``, ``isLoggedIn``); every model also
accepts the Python field name.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from appfun.models.invitation import InvitationCode
from appfun.models.session import SessionRecord


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Requests
# =============================================================================

class InvitationCodeRequest(_Body):
    code: Optional[str] = None


class UseInvitationRequest(_Body):
    code: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")


class LoginRequest(_Body):
    email: str = ""
    password: str = ""
    remember_me: bool = Field(default=False, alias="rememberMe")


class SignUpRequest(_Body):
    email: str = ""
    password: str = ""
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")


class ResetPasswordRequest(_Body):
    email: str = ""


class UpdatePasswordRequest(_Body):
    password: str = ""


# =============================================================================
# Responses
# =============================================================================

class UserView(_Body):
    """Public projection of a ``SessionRecord``."""

    id: Union[int, str]
    email: str
    username: str
    full_name: str = ""
    avatar: str = ""
    email_confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_logged_in: bool = Field(default=True, alias="isLoggedIn")

    @classmethod
    def from_record(cls, record: Optional[SessionRecord]) -> Optional["UserView"]:
        if record is None:
            return None
        return cls(
            id=record.id,
            email=record.email,
            username=record.username,
            full_name=record.full_name,
            avatar=record.avatar,
            email_confirmed_at=record.email_confirmed_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
            is_logged_in=record.logged_in,
        )


class SessionView(_Body):
    login_time: datetime = Field(alias="loginTime")
    expires_at: datetime = Field(alias="expiresAt")
    remember_me: bool = Field(default=False, alias="rememberMe")


class SessionResponse(_Body):
    session: Optional[SessionView] = None
    user: Optional[UserView] = None
    is_logged_in: bool = Field(default=False, alias="isLoggedIn")
    error: Optional[str] = None


class UserResponse(_Body):
    user: Optional[UserView] = None
    error: Optional[str] = None


class StatusResponse(_Body):
    is_logged_in: bool = Field(alias="isLoggedIn")
    under_review: bool = Field(alias="underReview")
    can_download: bool = Field(alias="canDownload")
    user: Optional[UserView] = None
    error: Optional[str] = None


class ValidateInvitationResponse(_Body):
    valid: bool
    message: str


class UseInvitationResponse(_Body):
    success: bool
    profile_id: Optional[int] = Field(default=None, alias="profileId")
    message: Optional[str] = None
    error: Optional[str] = None


class AuthActionResponse(_Body):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = Field(default=None, alias="errorCode")
    user: Optional[UserView] = None
    requires_email_confirmation: bool = Field(default=False, alias="requiresEmailConfirmation")


class InvitationListResponse(_Body):
    success: bool
    invitations: list[InvitationCode] = []
    total: int = 0
    message: Optional[str] = None
    error: Optional[str] = None


class HealthResponse(_Body):
    status: str
    timestamp: str
    supabase: str
