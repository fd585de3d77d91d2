"""
Auth API routes.

Thin adapters over the service container: each handler calls one
service operation and maps its typed result to a status code and a JSON
body.  Handlers are plain ``def`` so FastAPI runs them on its worker
threads; the services underneath are blocking and thread-safe.

The session endpoints report the process-wide ``AuthStateManager``
session, i.e. one principal per running instance.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from appfun.api.schemas import (
    AuthActionResponse,
    HealthResponse,
    InvitationCodeRequest,
    InvitationListResponse,
    LoginRequest,
    ResetPasswordRequest,
    SessionResponse,
    SessionView,
    SignUpRequest,
    StatusResponse,
    UpdatePasswordRequest,
    UseInvitationRequest,
    UseInvitationResponse,
    UserResponse,
    UserView,
    ValidateInvitationResponse,
)
from appfun.models.auth_models import AuthErrorCode, AuthResult
from appfun.models.invitation import InvitationErrorCode, InvitationStatusFilter
from appfun.models.session import PageContext
from appfun.services import ServiceContainer

router = APIRouter(prefix="/auth", tags=["Auth"])
health_router = APIRouter(tags=["Health"])

NOT_SIGNED_IN: str = "Not signed in."

_AUTH_STATUS: dict[AuthErrorCode, int] = {
    AuthErrorCode.VALIDATION_ERROR: 400,
    AuthErrorCode.INVALID_CREDENTIALS: 401,
    AuthErrorCode.EMAIL_NOT_CONFIRMED: 403,
    AuthErrorCode.EMAIL_ALREADY_EXISTS: 409,
    AuthErrorCode.WEAK_PASSWORD: 400,
    AuthErrorCode.RATE_LIMITED: 429,
    AuthErrorCode.SESSION_EXPIRED: 401,
    AuthErrorCode.NOT_CONFIGURED: 503,
    AuthErrorCode.NETWORK_ERROR: 502,
    AuthErrorCode.TIMEOUT_ERROR: 504,
    AuthErrorCode.UNKNOWN_ERROR: 500,
}

_INVITATION_STATUS: dict[InvitationErrorCode, int] = {
    InvitationErrorCode.VALIDATION_ERROR: 400,
    InvitationErrorCode.STORE_ERROR: 500,
    InvitationErrorCode.TIMEOUT: 504,
}


def get_services(request: Request) -> ServiceContainer:
    """Dependency: the container wired at startup."""
    return request.app.state.services


def _json(body: BaseModel, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=body.model_dump(mode="json", by_alias=True),
    )


def _auth_response(result: AuthResult) -> JSONResponse:
    body = AuthActionResponse(
        success=result.success,
        message=result.message,
        error=result.error_message,
        error_code=str(result.error_code) if result.error_code else None,
        user=UserView.from_record(result.user),
        requires_email_confirmation=result.requires_email_confirmation,
    )
    if result.success:
        return _json(body)
    return _json(body, _AUTH_STATUS.get(result.error_code or AuthErrorCode.UNKNOWN_ERROR, 500))


# =============================================================================
# Invitations
# =============================================================================

@router.post("/validate-invitation")
def validate_invitation(
    payload: InvitationCodeRequest,
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    """Check whether an invitation code can currently be redeemed.

    Returns 200 with ``valid=false`` for codes that exist but cannot be
    used; 400 only for a missing or malformed code.
    """
    result = services["invitation_service"].validate(payload.code)
    status_code = _INVITATION_STATUS.get(result.error_code, 200) if result.error_code else 200
    return _json(ValidateInvitationResponse(valid=result.valid, message=result.message), status_code)


@router.post("/use-invitation")
def use_invitation(
    payload: UseInvitationRequest,
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    """Redeem one use of an invitation code for ``userId``."""
    result = services["invitation_service"].redeem(payload.code, payload.user_id)
    body = UseInvitationResponse(
        success=result.success,
        profile_id=result.profile_id,
        message=result.message,
        error=result.error,
    )
    if result.success:
        return _json(body)
    return _json(body, _INVITATION_STATUS.get(result.error_code, 400) if result.error_code else 400)


@router.get("/invitations")
def list_invitations(
    status: InvitationStatusFilter = Query(default=InvitationStatusFilter.ALL),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    result = services["invitation_service"].list_codes(status.value, limit, offset)
    body = InvitationListResponse(
        success=result.success,
        invitations=result.invitations,
        total=result.total,
        message=result.message,
        error=result.error,
    )
    return _json(body, 200 if result.success else 500)


# =============================================================================
# Session
# =============================================================================

@router.get("/session")
def get_session(services: ServiceContainer = Depends(get_services)) -> JSONResponse:
    manager = services["auth_manager"]
    if not manager.is_valid():
        state = manager.get_state()
        return _json(
            SessionResponse(error=state.error or NOT_SIGNED_IN, is_logged_in=False), 401,
        )
    user = manager.get_state().user
    if user is None:
        return _json(SessionResponse(error=NOT_SIGNED_IN, is_logged_in=False), 401)
    return _json(
        SessionResponse(
            session=SessionView(
                login_time=user.login_time,
                expires_at=user.expires_at,
                remember_me=user.remember_me,
            ),
            user=UserView.from_record(user),
            is_logged_in=True,
        )
    )


@router.delete("/session")
def delete_session(services: ServiceContainer = Depends(get_services)) -> JSONResponse:
    return _auth_response(services["auth_manager"].sign_out())


@router.post("/logout")
def logout(services: ServiceContainer = Depends(get_services)) -> JSONResponse:
    result = services["auth_manager"].sign_out()
    if result.success and result.message is None:
        result = result.model_copy(update={"message": "Signed out."})
    return _auth_response(result)


@router.get("/user")
def get_user(services: ServiceContainer = Depends(get_services)) -> JSONResponse:
    manager = services["auth_manager"]
    user = manager.get_state().user if manager.is_valid() else None
    return _json(UserResponse(user=UserView.from_record(user)))


@router.get("/status")
def get_status(
    request: Request,
    path: str = Query(default="/"),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    """Effective auth state for a page at *path*, under-review override included."""
    query = {k: v for k, v in request.query_params.items() if k != "path"}
    context = PageContext(path=path, query=query)
    manager = services["auth_manager"]
    if not manager.is_review_access(context):
        manager.is_valid()
    state = manager.effective_state(context)
    return _json(
        StatusResponse(
            is_logged_in=state.is_logged_in,
            under_review=manager.is_under_review(context),
            can_download=manager.check_download_permission(context),
            user=UserView.from_record(state.user),
            error=state.error,
        )
    )


# =============================================================================
# Credentials
# =============================================================================

@router.post("/login")
def login(
    payload: LoginRequest,
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    return _auth_response(
        services["auth_manager"].sign_in(payload.email, payload.password, payload.remember_me)
    )


@router.post("/sign-up")
def sign_up(
    payload: SignUpRequest,
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    return _auth_response(
        services["auth_manager"].sign_up(payload.email, payload.password, payload.confirm_password)
    )


@router.post("/reset-password")
def reset_password(
    payload: ResetPasswordRequest,
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    return _auth_response(services["auth_manager"].reset_password(payload.email))


@router.post("/update-password")
def update_password(
    payload: UpdatePasswordRequest,
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    manager = services["auth_manager"]
    if not manager.is_valid():
        return _auth_response(
            AuthResult.failure(AuthErrorCode.SESSION_EXPIRED, NOT_SIGNED_IN)
        )
    return _auth_response(manager.update_password(payload.password))


# =============================================================================
# Health
# =============================================================================

@health_router.get("/health", response_model=HealthResponse)
def health_check(services: ServiceContainer = Depends(get_services)) -> HealthResponse:
    """Liveness plus whether the identity provider is configured."""
    configured = services["identity_provider"].is_configured
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(tz=timezone.utc).isoformat(),
        supabase="configured" if configured else "offline",
    )
