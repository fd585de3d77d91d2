"""
Page-Auth Bootstrap.

Per-page glue around ``AuthStateManager``: checks validity on page
load, keeps a valid session fresh with a periodic timer and on
visibility changes, and offers the small helpers pages use to render
auth-dependent UI.  Nothing here redirects by itself; ``require_auth``
returns the URL and the host performs the redirect.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional, Protocol
from urllib.parse import quote, urlencode

from appfun.logger import StructuredLogger
from appfun.models.session import PageContext, SessionRecord
from appfun.services.auth_manager import AuthStateManager
from appfun.services.base_service import BaseService

Disposer = Callable[[], None]
VisibilityListener = Callable[[bool], None]


class VisibilitySource(Protocol):
    """Anything that reports page visibility changes."""

    def add_listener(self, listener: VisibilityListener) -> None: ...

    def remove_listener(self, listener: VisibilityListener) -> None: ...


class VisibilityEvents:
    """In-process visibility event source.

    Hosts call ``set_visible`` when their page (window, tab, client
    connection) becomes visible or hidden.
    """

    def __init__(self) -> None:
        self._lock: threading.Lock = threading.Lock()
        self._listeners: list[VisibilityListener] = []

    def add_listener(self, listener: VisibilityListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: VisibilityListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def set_visible(self, visible: bool) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(visible)


class PageAuthBootstrap(BaseService):
    """Page-level auth lifecycle.

    Parameters
    ----------
    manager:
        The process-wide ``AuthStateManager``.
    logger:
        A ``StructuredLogger`` instance.
    refresh_interval:
        Seconds between timer-driven refreshes.
    login_url:
        Where ``require_auth`` sends anonymous visitors.
    return_url_param:
        Query parameter that carries the page to come back to.
    """

    def __init__(
        self,
        manager: AuthStateManager,
        logger: StructuredLogger,
        refresh_interval: float = 300.0,
        login_url: str = "/auth/login",
        return_url_param: str = "redirect",
    ) -> None:
        super().__init__(logger)
        if refresh_interval <= 0:
            raise ValueError("refresh_interval must be positive")
        self._manager: AuthStateManager = manager
        self._refresh_interval: float = refresh_interval
        self._login_url: str = login_url
        self._return_url_param: str = return_url_param

    # ------------------------------------------------------------------
    # Page load
    # ------------------------------------------------------------------

    def initialize_page(self, context: PageContext) -> bool:
        """Check (and extend) the session for a page that just loaded.

        Returns whether the page is authenticated.
        """
        if self._manager.is_review_access(context):
            self._logger.info(
                "Under review: anonymous access allowed for %s.", context.path,
                extra={"event": "REVIEW_ACCESS"},
            )
            return True

        if not self._manager.is_valid():
            self._logger.info("Auth state invalid or expired on %s.", context.path)
            return False

        self._manager.refresh()
        self._logger.debug("Page auth initialised for %s.", context.path)
        return True

    # ------------------------------------------------------------------
    # Background triggers
    # ------------------------------------------------------------------

    def start_refresh_timer(self, interval: Optional[float] = None) -> Disposer:
        """Refresh every *interval* seconds while the session is valid.

        Returns a disposer that stops the timer thread.
        """
        period = interval if interval is not None else self._refresh_interval
        if period <= 0:
            raise ValueError("interval must be positive")
        stop_event = threading.Event()

        def _run_loop() -> None:
            try:
                while not stop_event.wait(timeout=period):
                    try:
                        if self._manager.is_valid():
                            self._manager.refresh()
                    except Exception:
                        self._logger.warning("Timed auth refresh failed.", exc_info=True)
            except Exception:
                self._logger.error(
                    "Auth refresh thread terminated due to unhandled exception.",
                    exc_info=True,
                )

        thread = threading.Thread(target=_run_loop, name="AuthRefreshTimer", daemon=True)
        thread.start()
        self._logger.debug("Auth refresh timer started (every %.0fs).", period)

        def _dispose() -> None:
            stop_event.set()
            if thread is not threading.current_thread():
                thread.join(timeout=10.0)
            if thread.is_alive():
                self._logger.warning("Auth refresh timer did not terminate within 10 s.")

        return _dispose

    def setup_visibility_refresh(self, events: VisibilitySource) -> Disposer:
        """Refresh whenever the page becomes visible again, while valid."""

        def _on_visibility(visible: bool) -> None:
            if not visible:
                return
            try:
                if self._manager.is_valid():
                    self._manager.refresh()
            except Exception:
                self._logger.warning("Visibility auth refresh failed.", exc_info=True)

        events.add_listener(_on_visibility)
        return lambda: events.remove_listener(_on_visibility)

    def setup_page_auth(
        self,
        context: PageContext,
        events: Optional[VisibilitySource] = None,
    ) -> Disposer:
        """Initialise the page and start both refresh triggers."""
        self.initialize_page(context)
        stop_timer = self.start_refresh_timer()
        stop_visibility: Disposer = (
            self.setup_visibility_refresh(events) if events is not None else (lambda: None)
        )

        def _dispose() -> None:
            stop_timer()
            stop_visibility()

        return _dispose

    # ------------------------------------------------------------------
    # Helpers for page rendering
    # ------------------------------------------------------------------

    def is_user_logged_in(self, context: PageContext) -> bool:
        if self._manager.is_review_access(context):
            return True
        return self._manager.is_valid() and self._manager.get_state().is_logged_in

    def get_current_user(self, context: PageContext) -> Optional[SessionRecord]:
        if self._manager.is_review_access(context):
            return self._manager.effective_state(context).user
        if not self._manager.is_valid():
            return None
        return self._manager.get_state().user

    def require_auth(self, context: PageContext, current_url: Optional[str] = None) -> Optional[str]:
        """Return the login URL to redirect to, or ``None`` when access is allowed."""
        if self.is_user_logged_in(context):
            return None
        if current_url is None:
            current_url = context.path
            if context.query:
                current_url += "?" + urlencode(context.query)
        return f"{self._login_url}?{self._return_url_param}={quote(current_url, safe='')}"

    def redirect_if_logged_in(self, context: PageContext, redirect_url: str = "/") -> Optional[str]:
        """Return *redirect_url* when the visitor is already signed in."""
        return redirect_url if self.is_user_logged_in(context) else None


def get_user_display_name(user: Optional[SessionRecord]) -> str:
    if user is None:
        return "Unknown user"
    if user.full_name.strip():
        return user.full_name
    if user.username.strip():
        return user.username
    if user.email:
        return user.email.split("@")[0]
    return f"User #{user.id}"


def get_user_avatar_url(user: Optional[SessionRecord]) -> str:
    if user is None:
        return ""
    if user.avatar.strip():
        return user.avatar
    name = quote(get_user_display_name(user), safe="")
    return f"https://ui-avatars.com/api/?name={name}&background=random"
