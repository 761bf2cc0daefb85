"""Tournament allowance for guest identities."""

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import current_app
from sqlalchemy import func

from tourneykeeper.constants import GUEST_TOURNAMENT_LIMIT, INACTIVE_TOURNAMENT_STATUSES
from tourneykeeper.errors import QuotaExceededError
from tourneykeeper.extensions import db
from tourneykeeper.models import Tournament

if TYPE_CHECKING:
    from tourneykeeper.core.types import QuotaStatus
    from tourneykeeper.models import Identity


def compute_quota(
    is_limited_identity: bool,
    used: int,
    enabled: bool = True,
    limit: int = GUEST_TOURNAMENT_LIMIT,
) -> QuotaStatus:
    """Describe how close an identity is to its tournament limit.

    The global switch is checked first; when it is off, or the identity is
    not a guest, the result is unlimited.
    """
    if not enabled or not is_limited_identity:
        return {
            "is_limited": False,
            "limit": None,
            "used": used,
            "remaining": None,
            "can_create": True,
            "is_near_limit": False,
            "is_at_limit": False,
        }

    remaining = max(0, limit - used)
    return {
        "is_limited": True,
        "limit": limit,
        "used": used,
        "remaining": remaining,
        "can_create": remaining > 0,
        "is_near_limit": remaining <= 1,
        "is_at_limit": remaining == 0,
    }


def count_active_tournaments(owner_id: str) -> int:
    """Tournaments owned by the identity that are neither archived nor deleted."""
    return db.session.execute(
        db.select(func.count(Tournament.id)).where(
            Tournament.owner_id == owner_id,
            Tournament.status.not_in(INACTIVE_TOURNAMENT_STATUSES),
        )
    ).scalar_one()


class GuestQuotaService:
    """Applies the guest tournament limit to identities."""

    @staticmethod
    def get_quota_for_identity(identity: Identity | None) -> QuotaStatus:
        if not current_app.config["GUEST_LIMIT_ENABLED"]:
            return compute_quota(False, 0, enabled=False)
        if identity is None or not identity.is_guest:
            return compute_quota(False, 0)
        return compute_quota(True, count_active_tournaments(identity.id))

    @staticmethod
    def ensure_can_create(identity: Identity | None) -> QuotaStatus:
        quota = GuestQuotaService.get_quota_for_identity(identity)
        if not quota["can_create"]:
            current_app.logger.info(
                f"Guest {identity.id} hit the tournament limit ({quota['used']})"
            )
            raise QuotaExceededError(
                f"Guests can keep up to {quota['limit']} active tournaments. "
                "Create an account to add more."
            )
        return quota
