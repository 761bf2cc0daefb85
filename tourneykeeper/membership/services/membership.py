"""Service layer for tournament memberships and ownership."""

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from tourneykeeper.constants import (
    ROLE_CO_ADMIN,
    ROLE_OWNER,
    ROLE_TRAINER,
    TOURNAMENT_ROLES,
)
from tourneykeeper.errors import (
    ForbiddenError,
    NotFoundError,
    PartialUpdateError,
    ValidationError,
)
from tourneykeeper.extensions import db
from tourneykeeper.models import Tournament, TournamentMembership
from tourneykeeper.permissions import (
    can_change_role,
    can_remove_member,
    can_set_role_to,
    can_transfer_ownership,
    rank,
)
from tourneykeeper.utils import utcnow

if TYPE_CHECKING:
    from collections.abc import Iterable


def clean_team_ids(role: str, team_ids: Iterable[str] | None) -> list[str]:
    """Team scoping only applies to trainers."""
    if role != ROLE_TRAINER or not team_ids:
        return []
    return sorted({str(team_id) for team_id in team_ids if team_id})


class MembershipService:
    """Reads and mutates tournament memberships.

    Every mutation re-reads the actor's membership from the database right
    before applying it, so a role the client still believes it holds is
    never trusted.
    """

    @staticmethod
    def get_tournament(tournament_id: str) -> Tournament:
        tournament = db.session.get(Tournament, tournament_id, populate_existing=True)
        if tournament is None:
            raise NotFoundError("Tournament not found.")
        return tournament

    @staticmethod
    def get_membership(membership_id: str) -> TournamentMembership:
        membership = db.session.get(
            TournamentMembership, membership_id, populate_existing=True
        )
        if membership is None:
            raise NotFoundError("Membership not found.")
        return membership

    @staticmethod
    def get_user_membership(
        tournament_id: str, user_id: str | None
    ) -> TournamentMembership | None:
        if not user_id:
            return None
        return db.session.execute(
            db.select(TournamentMembership)
            .filter_by(tournament_id=tournament_id, user_id=user_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @staticmethod
    def require_actor(tournament_id: str, actor_id: str | None) -> TournamentMembership:
        """Return the actor's current membership or refuse."""
        actor = MembershipService.get_user_membership(tournament_id, actor_id)
        if actor is None:
            raise ForbiddenError("You are not a member of this tournament.")
        return actor

    @staticmethod
    def get_tournament_members(tournament_id: str) -> list[TournamentMembership]:
        """All members, highest role first, then by join date."""
        members = db.session.execute(
            db.select(TournamentMembership)
            .filter_by(tournament_id=tournament_id)
            .order_by(TournamentMembership.created_at)
        ).scalars().all()
        return sorted(members, key=lambda m: -rank(m.role))

    @staticmethod
    def get_co_admins(tournament_id: str) -> list[TournamentMembership]:
        return list(
            db.session.execute(
                db.select(TournamentMembership)
                .filter_by(tournament_id=tournament_id, role=ROLE_CO_ADMIN)
                .order_by(TournamentMembership.created_at)
            ).scalars()
        )

    @staticmethod
    def owner_memberships(tournament_id: str) -> list[TournamentMembership]:
        return list(
            db.session.execute(
                db.select(TournamentMembership)
                .filter_by(tournament_id=tournament_id, role=ROLE_OWNER)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    @staticmethod
    def create_owner_membership(
        tournament_id: str, user_id: str, commit: bool = True
    ) -> TournamentMembership:
        membership = TournamentMembership(
            tournament_id=tournament_id,
            user_id=user_id,
            role=ROLE_OWNER,
            team_ids=[],
            accepted_at=utcnow(),
        )
        db.session.add(membership)
        if commit:
            db.session.commit()
        return membership

    @staticmethod
    def change_role(
        membership_id: str,
        new_role: str,
        actor_id: str,
        team_ids: Iterable[str] | None = None,
    ) -> TournamentMembership:
        """Move a member to a new role, keeping team scoping for trainers only."""
        if new_role not in TOURNAMENT_ROLES:
            raise ValidationError(f"Unknown role '{new_role}'.")

        membership = MembershipService.get_membership(membership_id)
        actor = MembershipService.require_actor(membership.tournament_id, actor_id)
        if not can_set_role_to(actor.role, membership.role, new_role):
            current_app.logger.warning(
                f"{actor_id} ({actor.role}) may not change {membership.user_id} "
                f"from {membership.role} to {new_role}"
            )
            raise ForbiddenError("You cannot assign that role to this member.")

        membership.role = new_role
        membership.team_ids = clean_team_ids(new_role, team_ids)
        db.session.commit()
        current_app.logger.info(
            f"Member {membership.user_id} is now {new_role} in {membership.tournament_id}"
        )
        return membership

    @staticmethod
    def update_trainer_teams(
        membership_id: str, team_ids: Iterable[str], actor_id: str
    ) -> TournamentMembership:
        membership = MembershipService.get_membership(membership_id)
        actor = MembershipService.require_actor(membership.tournament_id, actor_id)
        if not can_change_role(actor.role, membership.role):
            raise ForbiddenError("You cannot change this member's teams.")
        if membership.role != ROLE_TRAINER:
            raise ValidationError("Only trainers are assigned to teams.")

        membership.team_ids = clean_team_ids(ROLE_TRAINER, team_ids)
        db.session.commit()
        return membership

    @staticmethod
    def remove_member(membership_id: str, actor_id: str) -> None:
        membership = MembershipService.get_membership(membership_id)
        if membership.role == ROLE_OWNER:
            raise ForbiddenError("The owner cannot be removed. Transfer ownership first.")
        actor = MembershipService.require_actor(membership.tournament_id, actor_id)
        if not can_remove_member(actor.role, membership.role):
            raise ForbiddenError("You cannot remove this member.")

        db.session.delete(membership)
        db.session.commit()
        current_app.logger.info(
            f"{actor_id} removed {membership.user_id} from {membership.tournament_id}"
        )

    @staticmethod
    def transfer_ownership(
        tournament_id: str, new_owner_id: str, actor_id: str
    ) -> TournamentMembership:
        """Hand the tournament to a co-admin; the old owner becomes co-admin.

        Both role changes and the tournament's owner_id are written in one
        transaction. Afterwards the owner count is read back; anything but a
        single owner (the successor) is repaired from ``owner_id`` and
        reported as a ``PartialUpdateError``.
        """
        tournament = MembershipService.get_tournament(tournament_id)
        actor = MembershipService.require_actor(tournament_id, actor_id)
        successor = MembershipService.get_user_membership(tournament_id, new_owner_id)
        if successor is None:
            raise NotFoundError("The new owner must be a member of this tournament.")
        if successor.id == actor.id:
            raise ValidationError("You already own this tournament.")
        if not can_transfer_ownership(actor.role, successor.role):
            raise ForbiddenError("Ownership can only be transferred by the owner to a co-admin.")

        try:
            actor.role = ROLE_CO_ADMIN
            actor.team_ids = []
            successor.role = ROLE_OWNER
            successor.team_ids = []
            tournament.owner_id = new_owner_id
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Ownership transfer for {tournament_id} failed: {e}")
            raise

        owners = MembershipService.owner_memberships(tournament_id)
        if len(owners) != 1 or owners[0].user_id != new_owner_id:
            current_app.logger.critical(
                f"Ownership transfer for {tournament_id} left "
                f"{[o.user_id for o in owners]} as owners; reconciling"
            )
            MembershipService.reconcile_ownership(tournament_id)
            raise PartialUpdateError(
                "The ownership transfer did not complete. Please check the member list."
            )

        current_app.logger.info(
            f"Ownership of {tournament_id} moved from {actor_id} to {new_owner_id}"
        )
        return successor

    @staticmethod
    def reconcile_ownership(tournament_id: str) -> TournamentMembership:
        """Restore exactly one owner membership, trusting ``tournaments.owner_id``."""
        tournament = MembershipService.get_tournament(tournament_id)
        members = db.session.execute(
            db.select(TournamentMembership)
            .filter_by(tournament_id=tournament_id)
            .execution_options(populate_existing=True)
        ).scalars().all()

        repaired = []
        owner = None
        for member in members:
            if member.user_id == tournament.owner_id:
                owner = member
            elif member.role == ROLE_OWNER:
                member.role = ROLE_CO_ADMIN
                repaired.append(member.user_id)

        if owner is None:
            owner = MembershipService.create_owner_membership(
                tournament_id, tournament.owner_id, commit=False
            )
            repaired.append(tournament.owner_id)
        elif owner.role != ROLE_OWNER:
            owner.role = ROLE_OWNER
            owner.team_ids = []
            repaired.append(owner.user_id)

        db.session.commit()
        if repaired:
            current_app.logger.warning(
                f"Reconciled ownership of {tournament_id}; adjusted {repaired}"
            )
        return owner
