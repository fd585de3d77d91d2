"""
Repository Package.

    from appfun.repositories import InvitationRepository
"""

from __future__ import annotations

from appfun.repositories.base_repository import BaseRepository, is_missing_relation
from appfun.repositories.invitation_repository import InvitationRepository

__all__ = ["BaseRepository", "InvitationRepository", "is_missing_relation"]
