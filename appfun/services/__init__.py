"""
Business Logic Services Package.

The ``create_services()`` factory wires the storage layer, the identity
provider and every service together, returning a typed dict that the
application layer (API, page hosts) consumes without knowing the
internal dependency graph.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Optional, TypedDict

from appfun.config import AppConfig
from appfun.database import DatabaseManager
from appfun.logger import get_logger
from appfun.providers.base import IdentityProvider
from appfun.providers.offline_provider import OfflineIdentityProvider
from appfun.providers.supabase_provider import SupabaseIdentityProvider
from appfun.repositories.invitation_repository import InvitationRepository
from appfun.services.auth_manager import AuthStateManager
from appfun.services.invitation_service import InvitationService
from appfun.services.local_storage import LocalStorage
from appfun.services.page_auth import PageAuthBootstrap
from appfun.services.review_mode import ReviewModePolicy
from appfun.services.session_store import SessionStore


class ServiceContainer(TypedDict):
    """Typed container for all application services."""

    local_storage: LocalStorage
    session_store: SessionStore
    identity_provider: IdentityProvider
    review_policy: ReviewModePolicy
    auth_manager: AuthStateManager
    invitation_service: InvitationService
    page_auth: PageAuthBootstrap


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    provider: Optional[IdentityProvider] = None,
    kdf_iterations: int = 600_000,
) -> ServiceContainer:
    """
    Wire all repositories and services together.

    This is the single composition root for the service layer.  The
    application entry-point calls this once at startup.

    Args:
        db: Initialised DatabaseManager with the local schema applied.
        config: Application configuration.
        provider: Identity provider override; by default Supabase when
            configured, otherwise the offline provider.
        kdf_iterations: PBKDF2 iterations for the session store key.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("services")

    # ------------------------------------------------------------------
    # 1. Local persistence
    # ------------------------------------------------------------------
    local_storage = LocalStorage(db=db, logger=logger)
    session_store = SessionStore(
        storage=local_storage,
        logger=logger,
        storage_key=config.AUTH_STORAGE_KEY,
        salt_path=Path(config.SESSION_SALT_PATH),
        kdf_iterations=kdf_iterations,
    )

    # ------------------------------------------------------------------
    # 2. Identity provider (selected once, never branched on inline)
    # ------------------------------------------------------------------
    if provider is None:
        if db.is_online:
            provider = SupabaseIdentityProvider(
                client=db.supabase,
                logger=get_logger("identity"),
                request_timeout=config.REQUEST_TIMEOUT_S,
            )
        else:
            provider = OfflineIdentityProvider(
                logger=get_logger("identity"),
                simulate=config.OFFLINE_SIMULATION,
            )

    # ------------------------------------------------------------------
    # 3. Auth state
    # ------------------------------------------------------------------
    review_policy = ReviewModePolicy(
        enabled=config.UNDER_REVIEW_MODE,
        allow_paths=config.ALLOW_ANONYMOUS_PATHS,
        storage=local_storage,
    )
    auth_manager = AuthStateManager(
        provider=provider,
        store=session_store,
        review_policy=review_policy,
        logger=get_logger("auth"),
        session_duration=timedelta(hours=config.SESSION_DURATION_HOURS),
        remember_me_duration=timedelta(days=config.REMEMBER_ME_DAYS),
        renewal_threshold=timedelta(hours=config.SESSION_RENEWAL_THRESHOLD_HOURS),
        site_url=config.SITE_URL,
    )
    page_auth = PageAuthBootstrap(
        manager=auth_manager,
        logger=get_logger("page_auth"),
        refresh_interval=config.REFRESH_INTERVAL_S,
        login_url=config.LOGIN_URL,
        return_url_param=config.RETURN_URL_PARAM,
    )

    # ------------------------------------------------------------------
    # 4. Invitations
    # ------------------------------------------------------------------
    invitation_service = InvitationService(
        repository=InvitationRepository(db=db, logger=get_logger("invitations")),
        logger=get_logger("invitations"),
        test_codes=config.INVITATION_TEST_CODES,
        code_length=config.INVITATION_CODE_LENGTH,
    )

    return ServiceContainer(
        local_storage=local_storage,
        session_store=session_store,
        identity_provider=provider,
        review_policy=review_policy,
        auth_manager=auth_manager,
        invitation_service=invitation_service,
        page_auth=page_auth,
    )
