"""Service layer for invitation links."""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import TYPE_CHECKING
from urllib.parse import urlencode

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from tourneykeeper.constants import (
    DEFAULT_INVITATION_EXPIRY_DAYS,
    DEFAULT_INVITATION_MAX_USES,
    INVITATION_TOKEN_BYTES,
    REDIRECT_INVITE,
    ROLE_OWNER,
    TOURNAMENT_DELETED,
)
from tourneykeeper.errors import (
    AlreadyConsumedError,
    AuthenticationRequiredError,
    DuplicateResourceError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from tourneykeeper.extensions import db
from tourneykeeper.models import (
    Identity,
    Invitation,
    InvitationRedemption,
    Tournament,
    TournamentMembership,
)
from tourneykeeper.permissions import (
    assignable_roles,
    can_create_invitations,
    can_view_invitations,
)
from tourneykeeper.utils import utcnow

from .membership import MembershipService, clean_team_ids

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from tourneykeeper.core.types import InvitationValidation

# Reasons an invitation cannot be used
NOT_FOUND = "not_found"
DEACTIVATED = "deactivated"
EXPIRED = "expired"
MAX_USES_REACHED = "max_uses_reached"
ALREADY_MEMBER = "already_member"


def invitation_problem(
    invitation: Invitation | None, now: datetime, tournament: Tournament | None = None
) -> str | None:
    """Return why the invitation is unusable, or None if it can be redeemed."""
    if invitation is None:
        return NOT_FOUND
    if tournament is not None and tournament.status == TOURNAMENT_DELETED:
        return NOT_FOUND
    if not invitation.is_active:
        return DEACTIVATED
    if invitation.is_expired(now):
        return EXPIRED
    if invitation.is_exhausted():
        return MAX_USES_REACHED
    return None


def raise_for_problem(problem: str) -> None:
    if problem == NOT_FOUND:
        raise NotFoundError("Invitation not found.")
    if problem == DEACTIVATED:
        raise ExpiredError("This invitation is no longer active. Ask for a new one.")
    if problem == EXPIRED:
        raise ExpiredError("This invitation has expired. Ask for a new one.")
    if problem == MAX_USES_REACHED:
        raise AlreadyConsumedError("This invitation has already been used.")
    if problem == ALREADY_MEMBER:
        raise DuplicateResourceError("You are already a member of this tournament.")


class InvitationService:
    """Issues, checks and redeems invitation tokens."""

    @staticmethod
    def generate_token() -> str:
        """A fresh URL-safe token that has never been issued."""
        while True:
            token = secrets.token_urlsafe(INVITATION_TOKEN_BYTES)
            exists = db.session.execute(
                db.select(Invitation.id).filter_by(token=token)
            ).first()
            if exists is None:
                return token

    @staticmethod
    def build_invite_link(token: str) -> str:
        base_url = current_app.config["APP_BASE_URL"].rstrip("/")
        return f"{base_url}{REDIRECT_INVITE}?{urlencode({'token': token})}"

    @staticmethod
    def get_invitation_by_token(token: str) -> Invitation | None:
        if not token:
            return None
        return db.session.execute(
            db.select(Invitation)
            .filter_by(token=token)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @staticmethod
    def create_invitation(
        tournament_id: str,
        role: str,
        actor_id: str,
        team_ids: Iterable[str] | None = None,
        max_uses: int = DEFAULT_INVITATION_MAX_USES,
        expires_in_days: int = DEFAULT_INVITATION_EXPIRY_DAYS,
        label: str | None = None,
    ) -> Invitation:
        """Issue an invitation granting ``role`` in the tournament.

        ``max_uses=0`` allows unlimited redemptions and ``expires_in_days=0``
        never expires.
        """
        creator = db.session.get(Identity, actor_id)
        if creator is None:
            raise AuthenticationRequiredError()
        if creator.is_guest:
            raise ForbiddenError("Guests cannot create invitations.")
        if role == ROLE_OWNER:
            raise ValidationError("Ownership cannot be granted by invitation.")
        if max_uses is None or max_uses < 0:
            raise ValidationError("max_uses must be zero or more.")
        if expires_in_days is None or expires_in_days < 0:
            raise ValidationError("expires_in_days must be zero or more.")

        tournament = MembershipService.get_tournament(tournament_id)
        if tournament.status == TOURNAMENT_DELETED:
            raise NotFoundError("Tournament not found.")
        actor = MembershipService.require_actor(tournament_id, actor_id)
        if not can_create_invitations(actor.role) or role not in assignable_roles(
            actor.role
        ):
            raise ForbiddenError("You cannot invite members with that role.")

        invitation = Invitation(
            token=InvitationService.generate_token(),
            tournament_id=tournament_id,
            role=role,
            team_ids=clean_team_ids(role, team_ids),
            label=(label or "").strip() or None,
            max_uses=max_uses,
            uses_count=0,
            expires_at=(
                utcnow() + timedelta(days=expires_in_days) if expires_in_days else None
            ),
            created_by=actor_id,
            is_active=True,
        )
        db.session.add(invitation)
        db.session.commit()
        current_app.logger.info(
            f"{actor_id} created a {role} invitation for {tournament_id}"
        )
        return invitation

    @staticmethod
    def validate_invitation(token: str) -> InvitationValidation:
        """Check a token without consuming it."""
        invitation = InvitationService.get_invitation_by_token(token)
        tournament = (
            db.session.get(Tournament, invitation.tournament_id) if invitation else None
        )
        problem = invitation_problem(invitation, utcnow(), tournament)
        if problem is not None:
            return {"valid": False, "error": problem}

        inviter = db.session.get(Identity, invitation.created_by)
        return {
            "valid": True,
            "invitation": {
                "role": invitation.role,
                "team_ids": list(invitation.team_ids or []),
                "label": invitation.label,
                "expires_at": invitation.to_dict()["expires_at"],
            },
            "tournament": {"id": tournament.id, "title": tournament.title},
            "inviter": {
                "id": inviter.id if inviter else None,
                "display_name": inviter.display_name if inviter else None,
            },
        }

    @staticmethod
    def claim_use(invitation_id: str, now: datetime) -> bool:
        """Conditionally count one use; False when the invitation is no longer valid."""
        result = db.session.execute(
            update(Invitation)
            .where(
                Invitation.id == invitation_id,
                Invitation.is_active == True,  # noqa: E712
                or_(Invitation.max_uses == 0, Invitation.uses_count < Invitation.max_uses),
                or_(Invitation.expires_at.is_(None), Invitation.expires_at > now),
            )
            .values(uses_count=Invitation.uses_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def redeem_invitation(token: str, identity_id: str) -> TournamentMembership:
        """Join the tournament through an invitation, consuming one use.

        The use is counted with a conditional UPDATE, and the membership and
        redemption record are written in the same transaction, so two
        concurrent redemptions of a single-use invitation cannot both
        succeed.
        """
        identity = db.session.get(Identity, identity_id)
        if identity is None:
            raise AuthenticationRequiredError()

        now = utcnow()
        invitation = InvitationService.get_invitation_by_token(token)
        tournament = (
            db.session.get(Tournament, invitation.tournament_id) if invitation else None
        )
        problem = invitation_problem(invitation, now, tournament)
        if problem is None and MembershipService.get_user_membership(
            invitation.tournament_id, identity_id
        ):
            problem = ALREADY_MEMBER
        if problem is not None:
            raise_for_problem(problem)

        if not InvitationService.claim_use(invitation.id, now):
            db.session.rollback()
            invitation = db.session.get(Invitation, invitation.id, populate_existing=True)
            current_app.logger.warning(
                f"Invitation {invitation.id} became unusable during redemption"
            )
            raise_for_problem(invitation_problem(invitation, now) or MAX_USES_REACHED)

        membership = TournamentMembership(
            tournament_id=invitation.tournament_id,
            user_id=identity_id,
            role=invitation.role,
            team_ids=clean_team_ids(invitation.role, invitation.team_ids),
            invited_by=invitation.created_by,
            accepted_at=now,
        )
        db.session.add(membership)
        db.session.add(
            InvitationRedemption(
                invitation_id=invitation.id, user_id=identity_id, redeemed_at=now
            )
        )
        try:
            db.session.commit()
        except IntegrityError:
            # A concurrent redemption by the same identity won; the use is rolled back too.
            db.session.rollback()
            raise_for_problem(ALREADY_MEMBER)

        current_app.logger.info(
            f"{identity_id} joined {membership.tournament_id} as {membership.role}"
        )
        return membership

    @staticmethod
    def deactivate_invitation(invitation_id: str, actor_id: str) -> Invitation:
        invitation = db.session.get(Invitation, invitation_id)
        if invitation is None:
            raise NotFoundError("Invitation not found.")
        actor = MembershipService.require_actor(invitation.tournament_id, actor_id)
        if not can_create_invitations(actor.role):
            raise ForbiddenError("You cannot manage invitations for this tournament.")
        invitation.is_active = False
        db.session.commit()
        return invitation

    @staticmethod
    def list_active_invitations(tournament_id: str, actor_id: str) -> list[Invitation]:
        actor = MembershipService.require_actor(tournament_id, actor_id)
        if not can_view_invitations(actor.role):
            raise ForbiddenError("You cannot view invitations for this tournament.")
        now = utcnow()
        invitations = db.session.execute(
            db.select(Invitation)
            .filter_by(tournament_id=tournament_id, is_active=True)
            .order_by(Invitation.created_at.desc())
        ).scalars()
        return [inv for inv in invitations if invitation_problem(inv, now) is None]
