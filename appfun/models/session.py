"""
Session & Identity Models.

``IdentityUser`` is the provider-neutral view of a principal returned by
an identity provider.  ``SessionRecord`` is this application's own
proof of authentication, persisted locally with an absolute expiry.
``AuthState`` is the manager's derived view handed out to subscribers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Union
from urllib.parse import parse_qs

from pydantic import BaseModel, Field


class IdentityUser(BaseModel):
    """A principal as reported by the identity provider."""

    id: str
    email: Optional[str] = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)
    email_confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class IdentitySession(BaseModel):
    """Outcome of a provider sign-in / sign-up call.

    ``has_session`` is ``False`` when the provider created the user but
    withheld a session pending email confirmation.
    """

    user: Optional[IdentityUser] = None
    has_session: bool = False
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None


class SessionRecord(BaseModel):
    """One authenticated principal as known to this application.

    Either fully populated with ``logged_in=True`` or absent; there is
    no partially-authenticated record.
    """

    id: Union[int, str]
    auth_user_id: str
    email: str
    username: str
    full_name: str = ""
    avatar: str = ""
    email_confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    login_time: datetime
    expires_at: datetime
    logged_in: bool = True
    remember_me: bool = False

    model_config = {"from_attributes": True}


class StoredAuthData(BaseModel):
    """Self-describing envelope written under ``AUTH_STORAGE_KEY``."""

    user: SessionRecord
    login_time: datetime
    expires_at: datetime
    session_id: str


class AuthState(BaseModel):
    """The manager's current view.  Always derived, handed out as a copy."""

    is_logged_in: bool = False
    user: Optional[SessionRecord] = None
    is_loading: bool = False
    error: Optional[str] = None


class PageContext(BaseModel):
    """Location of the page (or request) an auth check is made for.

    Stands in for the browser's ``window.location``: the path decides
    the under-review allow-list match and the query string may carry
    the ``under_review=true`` marker.
    """

    path: str = "/"
    query: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_url_parts(cls, path: str, query_string: str = "") -> "PageContext":
        """Build a context from a raw path and query string."""
        parsed = parse_qs(query_string.lstrip("?"), keep_blank_values=True)
        return cls(path=path or "/", query={k: v[-1] for k, v in parsed.items()})
