"""
HTTP surface.

    from appfun.api import create_app
"""

from __future__ import annotations

from appfun.api.app import create_app
from appfun.api.routes import get_services, health_router, router

__all__ = ["create_app", "get_services", "health_router", "router"]
