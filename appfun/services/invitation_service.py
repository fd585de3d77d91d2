"""
Invitation Code Service.

Validates and redeems limited-use invitation codes against the shared
``invitation_codes`` table.

Correctness of redemption rests on the store: the final write is a
single conditional update (compare-and-set on ``current_uses`` and
``is_active``), so at most ``max_uses`` redemptions can ever succeed
for one code, however many requests race.

Degraded mode
-------------
When Supabase is not configured, or the table has not been migrated
yet, *read* paths fall back to a fixed allow-list of test codes.  Those
responses carry ``degraded=True`` and a "(test mode)" message, and
nothing is persisted.  A missing table on the *write* path is reported
as a failure.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from appfun.exceptions import (
    InvitationStoreError,
    InvitationStoreMissingError,
    InvitationStoreOfflineError,
)
from appfun.logger import StructuredLogger
from appfun.models.invitation import (
    InvitationCode,
    InvitationErrorCode,
    InvitationListing,
    InvitationRedemption,
    InvitationStatusFilter,
    InvitationValidation,
)
from appfun.repositories.invitation_repository import InvitationRepository
from appfun.services.base_service import BaseService

TEST_MODE_SUFFIX: str = " (test mode)"

_REJECTION_MESSAGES: dict[InvitationErrorCode, str] = {
    InvitationErrorCode.NOT_FOUND: "Invitation code does not exist.",
    InvitationErrorCode.DISABLED: "Invitation code has been disabled.",
    InvitationErrorCode.EXPIRED: "Invitation code has expired.",
    InvitationErrorCode.EXHAUSTED: "Invitation code has already been used (exhausted).",
    InvitationErrorCode.CONFLICT: "Invitation code has already been used or has expired.",
    InvitationErrorCode.TIMEOUT: "The invitation service timed out. Please try again.",
}


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class InvitationService(BaseService):
    """Validation, redemption and listing of invitation codes.

    Parameters
    ----------
    repository:
        Data access for ``invitation_codes`` / ``user_profiles``.
    logger:
        A ``StructuredLogger`` instance.
    test_codes:
        Allow-list used in degraded mode.
    code_length:
        Exact length of a well-formed code.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        repository: InvitationRepository,
        logger: StructuredLogger,
        test_codes: Sequence[str] = (),
        code_length: int = 8,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        super().__init__(logger)
        self._repo: InvitationRepository = repository
        self._test_codes: tuple[str, ...] = tuple(c.upper() for c in test_codes)
        self._code_length: int = code_length
        self._clock: Callable[[], datetime] = clock

    @staticmethod
    def canonicalize(code: Optional[str]) -> str:
        return (code or "").strip().upper()

    def _format_error(self, code: str) -> Optional[str]:
        if not code:
            return "Invitation code is required."
        if len(code) != self._code_length or not code.isalnum():
            return f"Invitation code must be {self._code_length} letters or digits."
        return None

    # ------------------------------------------------------------------
    # Validate (read-only)
    # ------------------------------------------------------------------

    def validate(self, code: Optional[str]) -> InvitationValidation:
        """Report whether *code* is currently redeemable.  Never writes."""
        canonical = self.canonicalize(code)
        format_error = self._format_error(canonical)
        if format_error:
            return InvitationValidation(
                valid=False, message=format_error, error_code=InvitationErrorCode.VALIDATION_ERROR,
            )

        try:
            invitation = self._repo.get_by_code(canonical)
        except (InvitationStoreOfflineError, InvitationStoreMissingError):
            return self._degraded_validate(canonical)
        except TimeoutError:
            return self._invalid(InvitationErrorCode.TIMEOUT)
        except (InvitationStoreError, ValueError) as exc:
            self._logger.error("Invitation validation failed for %s: %s", canonical, exc)
            return InvitationValidation(
                valid=False,
                message="Failed to validate invitation code.",
                error_code=InvitationErrorCode.STORE_ERROR,
            )

        if invitation is None:
            return self._invalid(InvitationErrorCode.NOT_FOUND)

        rejection = invitation.rejection(self._clock())
        if rejection is not None:
            return self._invalid(rejection)

        return InvitationValidation(valid=True, message="Invitation code is valid.")

    def _invalid(self, error_code: InvitationErrorCode) -> InvitationValidation:
        return InvitationValidation(
            valid=False, message=_REJECTION_MESSAGES[error_code], error_code=error_code,
        )

    def _degraded_validate(self, code: str) -> InvitationValidation:
        self._logger.warning(
            "Invitation store unavailable; validating %s against test codes.", code,
            extra={"event": "INVITATION_DEGRADED"},
        )
        if code in self._test_codes:
            return InvitationValidation(
                valid=True, message="Invitation code is valid" + TEST_MODE_SUFFIX + ".",
                degraded=True,
            )
        return InvitationValidation(
            valid=False,
            message="Invitation code is invalid or has expired" + TEST_MODE_SUFFIX + ".",
            error_code=InvitationErrorCode.NOT_FOUND,
            degraded=True,
        )

    # ------------------------------------------------------------------
    # Redeem
    # ------------------------------------------------------------------

    def redeem(self, code: Optional[str], user_id: Optional[str]) -> InvitationRedemption:
        """Consume one use of *code* on behalf of *user_id*.

        Re-reads and re-validates the row, then performs one conditional
        update.  Losing a race yields a ``CONFLICT`` failure; nothing is
        ever double-counted.
        """
        canonical = self.canonicalize(code)
        if not canonical or not (user_id or "").strip():
            return self._redeem_failure(
                InvitationErrorCode.VALIDATION_ERROR,
                "Invitation code and user id are required.",
            )
        format_error = self._format_error(canonical)
        if format_error:
            return self._redeem_failure(InvitationErrorCode.VALIDATION_ERROR, format_error)
        user_id = str(user_id).strip()

        try:
            invitation = self._repo.get_by_code(canonical)
        except (InvitationStoreOfflineError, InvitationStoreMissingError):
            return self._degraded_redeem(canonical)
        except TimeoutError:
            return self._redeem_failure(
                InvitationErrorCode.TIMEOUT, _REJECTION_MESSAGES[InvitationErrorCode.TIMEOUT],
            )
        except (InvitationStoreError, ValueError) as exc:
            self._logger.error("Invitation lookup failed for %s: %s", canonical, exc)
            return self._redeem_failure(
                InvitationErrorCode.STORE_ERROR, "Failed to redeem invitation code.",
            )

        if invitation is None:
            return self._redeem_failure(
                InvitationErrorCode.NOT_FOUND, _REJECTION_MESSAGES[InvitationErrorCode.NOT_FOUND],
            )

        now = self._clock()
        rejection = invitation.rejection(now)
        if rejection is not None:
            return self._redeem_failure(rejection, _REJECTION_MESSAGES[rejection])

        try:
            updated = self._repo.conditional_redeem(invitation, user_id, now)
        except InvitationStoreMissingError:
            return self._redeem_failure(
                InvitationErrorCode.STORE_ERROR,
                "Invitation store is not migrated; the redemption was not recorded"
                + TEST_MODE_SUFFIX + ".",
            )
        except TimeoutError:
            return self._redeem_failure(
                InvitationErrorCode.TIMEOUT, _REJECTION_MESSAGES[InvitationErrorCode.TIMEOUT],
            )
        except (InvitationStoreOfflineError, InvitationStoreError, ValueError) as exc:
            self._logger.error("Invitation update failed for %s: %s", canonical, exc)
            return self._redeem_failure(
                InvitationErrorCode.STORE_ERROR, "Failed to update invitation code.",
            )

        if updated is None:
            self._logger.warning(
                "Invitation %s redeem lost a concurrent update.", canonical,
                extra={"event": "INVITATION_CONFLICT", "user_id": user_id},
            )
            return self._redeem_failure(
                InvitationErrorCode.CONFLICT, _REJECTION_MESSAGES[InvitationErrorCode.CONFLICT],
            )

        profile_id = self._resolve_profile_id(invitation, user_id)
        self._logger.info(
            "Invitation %s redeemed by %s (%d/%d).",
            canonical, user_id, updated.current_uses, updated.max_uses,
            extra={"event": "INVITATION_REDEEMED", "user_id": user_id},
        )
        return InvitationRedemption(
            success=True, profile_id=profile_id, message="Invitation code redeemed successfully.",
        )

    def _resolve_profile_id(self, invitation: InvitationCode, user_id: str) -> Optional[int]:
        """Best effort; a failure here never fails the redemption."""
        try:
            profile_id = self._repo.get_profile_id(user_id)
            if profile_id is not None:
                self._repo.set_profile_id(invitation.id, profile_id)
            return profile_id
        except Exception as exc:
            self._logger.warning("Could not resolve profile id for %s: %s", user_id, exc)
            return None

    def _degraded_redeem(self, code: str) -> InvitationRedemption:
        self._logger.warning(
            "Invitation store unavailable; redeeming %s against test codes.", code,
            extra={"event": "INVITATION_DEGRADED"},
        )
        if code in self._test_codes:
            return InvitationRedemption(
                success=True,
                message="Invitation code redeemed" + TEST_MODE_SUFFIX + ".",
                degraded=True,
            )
        return InvitationRedemption(
            success=False,
            error="Invitation code is invalid, expired or already used" + TEST_MODE_SUFFIX + ".",
            error_code=InvitationErrorCode.NOT_FOUND,
            degraded=True,
        )

    @staticmethod
    def _redeem_failure(error_code: InvitationErrorCode, message: str) -> InvitationRedemption:
        return InvitationRedemption(success=False, error=message, error_code=error_code)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_codes(
        self, status: str = "all", limit: int = 50, offset: int = 0,
    ) -> InvitationListing:
        try:
            status_filter = InvitationStatusFilter(status or "all")
        except ValueError:
            return InvitationListing(success=False, error=f"Unknown status filter: {status}")
        if limit <= 0 or offset < 0:
            return InvitationListing(
                success=False, error="limit must be positive and offset non-negative.",
            )

        now = self._clock()
        try:
            codes = self._repo.list_codes(status_filter, limit, offset, now)
        except (InvitationStoreOfflineError, InvitationStoreMissingError):
            codes = self._test_rows(status_filter, now)[offset:offset + limit]
            return InvitationListing(
                success=True,
                invitations=codes,
                total=len(codes),
                message="Showing sample invitation codes" + TEST_MODE_SUFFIX + ".",
                degraded=True,
            )
        except TimeoutError:
            return InvitationListing(
                success=False, error=_REJECTION_MESSAGES[InvitationErrorCode.TIMEOUT],
            )
        except (InvitationStoreError, ValueError) as exc:
            self._logger.error("Listing invitation codes failed: %s", exc)
            return InvitationListing(success=False, error="Failed to list invitation codes.")

        return InvitationListing(success=True, invitations=codes, total=len(codes))

    def _test_rows(self, status: InvitationStatusFilter, now: datetime) -> list[InvitationCode]:
        rows = [
            InvitationCode(
                id=str(index + 1),
                code=code,
                is_active=True,
                created_at=now - timedelta(days=index + 1),
                expires_at=now + timedelta(days=29 - index),
                current_uses=0,
                max_uses=1,
                ad_watch_id=f"test-ad-{index + 1:03d}",
            )
            for index, code in enumerate(self._test_codes)
        ]
        if status == InvitationStatusFilter.ACTIVE:
            return [r for r in rows if r.is_redeemable(now)]
        if status == InvitationStatusFilter.USED:
            return [r for r in rows if r.used_at is not None]
        if status == InvitationStatusFilter.EXPIRED:
            return [r for r in rows if r.expires_at < now]
        return rows
