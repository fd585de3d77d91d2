"""
Identity Providers Package.

    from appfun.providers import IdentityProvider, SupabaseIdentityProvider
"""

from __future__ import annotations

from appfun.providers.base import AuthEventCallback, IdentityProvider, Unsubscribe
from appfun.providers.offline_provider import OfflineIdentityProvider
from appfun.providers.supabase_provider import SupabaseIdentityProvider

__all__ = [
    "AuthEventCallback",
    "IdentityProvider",
    "OfflineIdentityProvider",
    "SupabaseIdentityProvider",
    "Unsubscribe",
]
