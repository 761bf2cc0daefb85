"""Service layer for tournament records."""

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import current_app

from tourneykeeper.constants import (
    INACTIVE_TOURNAMENT_STATUSES,
    TOURNAMENT_ARCHIVED,
    TOURNAMENT_DELETED,
)
from tourneykeeper.errors import AuthenticationRequiredError, ForbiddenError
from tourneykeeper.extensions import db
from tourneykeeper.guest.services import GuestQuotaService
from tourneykeeper.membership.services import MembershipService
from tourneykeeper.models import Invitation, Tournament
from tourneykeeper.permissions import (
    can_create_tournament,
    can_delete_tournament,
    can_manage_tournament,
)

if TYPE_CHECKING:
    from tourneykeeper.models import Identity


class TournamentService:
    """Handles the tournament records access control depends on."""

    @staticmethod
    def create_tournament(identity: Identity | None, title: str) -> Tournament:
        """Create a tournament owned by the identity, subject to the guest limit."""
        if identity is None:
            raise AuthenticationRequiredError()
        if not can_create_tournament(identity.global_role):
            raise ForbiddenError("You cannot create tournaments.")
        GuestQuotaService.ensure_can_create(identity)

        tournament = Tournament(title=title.strip(), owner_id=identity.id)
        db.session.add(tournament)
        db.session.flush()
        MembershipService.create_owner_membership(
            tournament.id, identity.id, commit=False
        )
        db.session.commit()
        current_app.logger.info(f"{identity.id} created tournament {tournament.id}")
        return tournament

    @staticmethod
    def list_owned(owner_id: str, include_inactive: bool = False) -> list[Tournament]:
        query = db.select(Tournament).filter_by(owner_id=owner_id)
        if not include_inactive:
            query = query.where(Tournament.status.not_in(INACTIVE_TOURNAMENT_STATUSES))
        return list(
            db.session.execute(query.order_by(Tournament.created_at.desc())).scalars()
        )

    @staticmethod
    def archive_tournament(tournament_id: str, actor_id: str) -> Tournament:
        tournament = MembershipService.get_tournament(tournament_id)
        actor = MembershipService.require_actor(tournament_id, actor_id)
        if not can_manage_tournament(actor.role):
            raise ForbiddenError("You cannot archive this tournament.")
        tournament.status = TOURNAMENT_ARCHIVED
        db.session.commit()
        return tournament

    @staticmethod
    def delete_tournament(tournament_id: str, actor_id: str) -> Tournament:
        """Soft-delete; outstanding invitations stop working."""
        tournament = MembershipService.get_tournament(tournament_id)
        actor = MembershipService.require_actor(tournament_id, actor_id)
        if not can_delete_tournament(actor.role):
            raise ForbiddenError("Only the owner can delete this tournament.")
        tournament.status = TOURNAMENT_DELETED
        db.session.execute(
            db.update(Invitation)
            .where(Invitation.tournament_id == tournament_id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        current_app.logger.info(f"{actor_id} deleted tournament {tournament_id}")
        return tournament
