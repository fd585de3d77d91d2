"""
Under-review Policy.

During an app-store / mini-program audit some pages must be reachable
without signing in.  The override is active when any of these holds:

- the deployment flag ``UNDER_REVIEW_MODE`` is set,
- the page query carries ``under_review=true``,
- local storage holds ``under_review == "true"``.

An active override only applies to paths on the allow-list, which
matches either exactly or by ``/prefix/*`` wildcard.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from appfun.models.session import PageContext, SessionRecord
from appfun.services.local_storage import LocalStorage

UNDER_REVIEW_KEY: str = "under_review"


def reviewer_identity(now: Optional[datetime] = None) -> SessionRecord:
    """The fixed placeholder identity reported while under review."""
    now = now or datetime.now(tz=timezone.utc)
    return SessionRecord(
        id=0,
        auth_user_id="review-mode-user",
        email="review@example.com",
        username="Reviewer",
        full_name="App Reviewer",
        avatar="",
        email_confirmed_at=now,
        created_at=now,
        updated_at=now,
        login_time=now,
        expires_at=datetime.max.replace(tzinfo=timezone.utc),
        logged_in=True,
    )


class ReviewModePolicy:
    """Decides whether the anonymous-access override applies to a page."""

    def __init__(
        self,
        enabled: bool,
        allow_paths: Sequence[str],
        storage: Optional[LocalStorage] = None,
    ) -> None:
        self._enabled: bool = enabled
        self._allow_paths: tuple[str, ...] = tuple(allow_paths)
        self._storage: Optional[LocalStorage] = storage

    def is_under_review(self, context: Optional[PageContext] = None) -> bool:
        if self._enabled:
            return True
        if context is not None and context.query.get(UNDER_REVIEW_KEY) == "true":
            return True
        if self._storage is not None:
            return self._storage.get(UNDER_REVIEW_KEY) == "true"
        return False

    def is_path_allowed(self, path: str) -> bool:
        """Match *path* against the allow-list, ignoring the override state."""
        for allowed in self._allow_paths:
            if allowed.endswith("/*"):
                if path.startswith(allowed[:-1]):
                    return True
            elif path == allowed:
                return True
        return False

    def applies(self, context: Optional[PageContext]) -> bool:
        """``True`` when under review and the page path is allow-listed."""
        if context is None:
            return False
        return self.is_under_review(context) and self.is_path_allowed(context.path)
