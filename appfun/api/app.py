"""
FastAPI application factory.

The caller builds the service container (``create_services``) and hands
it in; the app only stores it on ``app.state`` for the route
dependencies.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from appfun.api.routes import health_router, router
from appfun.exceptions import AppFunError
from appfun.logger import get_logger
from appfun.services import ServiceContainer


def create_app(services: ServiceContainer) -> FastAPI:
    logger = get_logger("api")

    app = FastAPI(
        title="APPFUN Auth API",
        description="Session, sign-in and invitation code endpoints.",
        version="1.0.0",
    )
    app.state.services = services

    # =========================================================================
    # Exception Handlers
    # =========================================================================

    @app.exception_handler(AppFunError)
    async def handle_appfun_error(request: Request, exc: AppFunError) -> JSONResponse:
        logger.warning(
            "%s %s failed: %s", request.method, request.url.path, exc.message,
            extra={"event": "API_ERROR", "code": exc.code},
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def handle_general_exception(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unexpected error on %s %s: %s", request.method, request.url.path, exc,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "An unexpected error occurred", "code": "INTERNAL_ERROR"},
        )

    # =========================================================================
    # Routers
    # =========================================================================

    app.include_router(health_router)
    app.include_router(router)

    return app
