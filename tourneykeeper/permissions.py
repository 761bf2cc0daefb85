"""Role-based permission checks for tournaments.

Every predicate is a pure function of role names (and, for trainers, the
team ids they are scoped to). Unknown roles rank below viewer, so every
check is total and answers False for them.
"""

from __future__ import annotations

from typing import Iterable

from .constants import (
    GLOBAL_ROLE_ADMIN,
    GLOBAL_ROLE_GUEST,
    GLOBAL_ROLE_USER,
    ROLE_CO_ADMIN,
    ROLE_COLLABORATOR,
    ROLE_OWNER,
    ROLE_TRAINER,
    ROLE_VIEWER,
    TOURNAMENT_ROLES,
)

ROLE_RANK = {
    ROLE_OWNER: 4,
    ROLE_CO_ADMIN: 3,
    ROLE_TRAINER: 2,
    ROLE_COLLABORATOR: 2,
    ROLE_VIEWER: 1,
}

PRIVILEGED_RANK = ROLE_RANK[ROLE_CO_ADMIN]


def rank(role: str | None) -> int:
    """Return the privilege rank of a role, 0 for unknown roles."""
    return ROLE_RANK.get(role or "", 0)


def is_privileged(role: str | None) -> bool:
    return rank(role) >= PRIVILEGED_RANK


def is_higher_role(role_a: str | None, role_b: str | None) -> bool:
    return rank(role_a) > rank(role_b)


def is_downgrade(current_role: str | None, new_role: str | None) -> bool:
    return is_higher_role(current_role, new_role)


# Member management


def can_change_role(actor_role: str | None, target_role: str | None) -> bool:
    """Whether the actor may change (or remove) a member holding target_role."""
    return is_privileged(actor_role) and is_higher_role(actor_role, target_role)


def can_set_role_to(
    actor_role: str | None, target_role: str | None, new_role: str | None
) -> bool:
    """Whether the actor may move a member from target_role to new_role.

    The actor must be able to change the member at all and must outrank the
    role being granted. Ownership is never granted here; it only moves
    through a transfer.
    """
    if new_role not in TOURNAMENT_ROLES or new_role == ROLE_OWNER:
        return False
    return can_change_role(actor_role, target_role) and is_higher_role(
        actor_role, new_role
    )


def can_remove_member(actor_role: str | None, target_role: str | None) -> bool:
    return can_change_role(actor_role, target_role)


def can_transfer_ownership(
    actor_role: str | None, successor_role: str | None = None
) -> bool:
    """Only the owner may transfer, and only to an existing co-admin."""
    if actor_role != ROLE_OWNER:
        return False
    return successor_role is None or successor_role == ROLE_CO_ADMIN


def assignable_roles(actor_role: str | None) -> list[str]:
    """Roles the actor may hand out, highest first."""
    if not is_privileged(actor_role):
        return []
    return [
        role
        for role in TOURNAMENT_ROLES
        if role != ROLE_OWNER and is_higher_role(actor_role, role)
    ]


# Tournament management


def can_manage_tournament(role: str | None) -> bool:
    return is_privileged(role)


def can_delete_tournament(role: str | None) -> bool:
    return role == ROLE_OWNER


def can_create_invitations(role: str | None) -> bool:
    return is_privileged(role)


def can_view_members(role: str | None) -> bool:
    return is_privileged(role)


def can_view_invitations(role: str | None) -> bool:
    return is_privileged(role)


def can_view_tournament(role: str | None) -> bool:
    return rank(role) > 0


def can_edit_schedule(role: str | None) -> bool:
    return is_privileged(role)


# Teams and results


def can_edit_all_teams(role: str | None) -> bool:
    return is_privileged(role)


def can_edit_team_metadata(role: str | None) -> bool:
    """Team name and logo; trainers only get the roster."""
    return is_privileged(role)


def can_edit_team_roster(
    role: str | None, user_team_ids: Iterable[str], team_id: str
) -> bool:
    if is_privileged(role):
        return True
    if role == ROLE_TRAINER:
        return team_id in set(user_team_ids or [])
    return False


def can_edit_results(
    role: str | None, user_team_ids: Iterable[str], match_team_ids: Iterable[str]
) -> bool:
    if is_privileged(role) or role == ROLE_COLLABORATOR:
        return True
    if role == ROLE_TRAINER:
        own = set(user_team_ids or [])
        return any(team_id in own for team_id in match_team_ids or [])
    return False


# Global roles


def can_create_tournament(global_role: str | None) -> bool:
    return global_role in (GLOBAL_ROLE_USER, GLOBAL_ROLE_ADMIN)


def is_global_admin(global_role: str | None) -> bool:
    return global_role == GLOBAL_ROLE_ADMIN


def is_guest(global_role: str | None) -> bool:
    return global_role == GLOBAL_ROLE_GUEST
