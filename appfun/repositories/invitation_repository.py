"""
Invitation Code Repository.

Data access for the Supabase ``invitation_codes`` table plus the
``user_profiles`` lookup used after a redemption.  No local cache: the
rows are shared state and only the remote store can arbitrate them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from appfun.models.invitation import InvitationCode, InvitationStatusFilter
from appfun.repositories.base_repository import BaseRepository


class InvitationRepository(BaseRepository):
    """Repository for invitation codes."""

    TABLE = "invitation_codes"
    PROFILES_TABLE = "user_profiles"

    def get_by_code(self, code: str) -> Optional[InvitationCode]:
        """Fetch one code by exact match, or ``None`` if it does not exist."""
        response = self._run(
            "get_by_code",
            lambda: self.supabase.table(self.TABLE)
            .select("*")
            .eq("code", code)
            .limit(1)
            .execute(),
        )
        rows = response.data or []
        return InvitationCode(**rows[0]) if rows else None

    def conditional_redeem(
        self, invitation: InvitationCode, user_id: str, now: datetime,
    ) -> Optional[InvitationCode]:
        """Consume one use of *invitation* if nobody else did first.

        Issues a single conditional update guarded on the observed
        ``current_uses`` and ``is_active``.  The store applies it
        atomically; zero matched rows means another redeemer won the
        race (or the code was disabled) and ``None`` is returned.
        """
        new_uses = invitation.current_uses + 1
        payload: dict[str, Any] = {
            "current_uses": new_uses,
            "used_by": user_id,
            "is_active": new_uses < invitation.max_uses,
        }
        if invitation.used_at is None:
            payload["used_at"] = now.isoformat()

        response = self._run(
            "conditional_redeem",
            lambda: self.supabase.table(self.TABLE)
            .update(payload)
            .eq("id", invitation.id)
            .eq("current_uses", invitation.current_uses)
            .eq("is_active", True)
            .execute(),
        )
        rows = response.data or []
        if not rows:
            return None
        return InvitationCode(**rows[0])

    def set_profile_id(self, invitation_id: Any, profile_id: int) -> None:
        self._run(
            "set_profile_id",
            lambda: self.supabase.table(self.TABLE)
            .update({"used_by_profile_id": profile_id})
            .eq("id", invitation_id)
            .execute(),
        )

    def get_profile_id(self, auth_user_id: str) -> Optional[int]:
        """Resolve the numeric ``user_profiles.id`` for an identity id."""
        response = self._run(
            "get_profile_id",
            lambda: self.supabase.table(self.PROFILES_TABLE)
            .select("id")
            .eq("auth_user_id", auth_user_id)
            .limit(1)
            .execute(),
        )
        rows = response.data or []
        return int(rows[0]["id"]) if rows else None

    def list_codes(
        self,
        status: InvitationStatusFilter,
        limit: int,
        offset: int,
        now: datetime,
    ) -> list[InvitationCode]:
        """List codes newest first, filtered by *status*."""
        now_iso = now.isoformat()

        def _query() -> Any:
            query = self.supabase.table(self.TABLE).select("*")
            if status == InvitationStatusFilter.ACTIVE:
                query = query.eq("is_active", True).is_("used_at", "null").gt("expires_at", now_iso)
            elif status == InvitationStatusFilter.USED:
                query = query.not_.is_("used_at", "null")
            elif status == InvitationStatusFilter.EXPIRED:
                query = query.lt("expires_at", now_iso)
            return query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()

        response = self._run("list_codes", _query)
        return [InvitationCode(**row) for row in (response.data or [])]
