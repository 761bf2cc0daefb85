"""Core data types for the tourneykeeper application."""

from typing import Any, Dict, List, Optional, TypedDict  # noqa: UP035


class QuotaStatus(TypedDict):
    """Guest tournament allowance as reported to the client."""

    is_limited: bool
    limit: Optional[int]
    used: int
    remaining: Optional[int]
    can_create: bool
    is_near_limit: bool
    is_at_limit: bool


class _ValidationResultBase(TypedDict):
    valid: bool


class InvitationValidation(_ValidationResultBase, total=False):
    """Result of checking an invitation token before redemption."""

    invitation: Dict[str, Any]  # noqa: UP006
    tournament: Dict[str, Any]  # noqa: UP006
    inviter: Dict[str, Any]  # noqa: UP006
    error: str


class MergeResult(TypedDict, total=False):
    """Outcome of one merge attempt."""

    success: bool
    tournaments_merged: int
    tournament_ids: List[str]  # noqa: UP006
    error: Optional[str]
