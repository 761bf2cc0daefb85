"""Database models for identities, tournaments and their access control."""

from __future__ import annotations

from typing import Any

from .constants import (
    GLOBAL_ROLE_GUEST,
    GLOBAL_ROLE_USER,
    IDENTITIES_TABLE,
    INVITATIONS_TABLE,
    MEMBERSHIPS_TABLE,
    MERGE_JOBS_TABLE,
    REDEMPTIONS_TABLE,
    TOURNAMENT_ACTIVE,
    TOURNAMENTS_TABLE,
)
from .extensions import db
from .utils import isoformat, new_id, utcnow


class Identity(db.Model):
    __tablename__ = IDENTITIES_TABLE

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    display_name = db.Column(db.String(120), nullable=False, default="Guest")
    email = db.Column(db.String(255), unique=True, nullable=True)
    avatar_url = db.Column(db.String(512))
    global_role = db.Column(db.String(16), nullable=False, default=GLOBAL_ROLE_USER)
    is_anonymous = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    last_login_at = db.Column(db.DateTime)

    @property
    def is_guest(self) -> bool:
        return bool(self.is_anonymous) or self.global_role == GLOBAL_ROLE_GUEST

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "email": self.email,
            "avatar_url": self.avatar_url,
            "global_role": self.global_role,
            "is_anonymous": bool(self.is_anonymous),
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Identity {self.id}>"


class Tournament(db.Model):
    __tablename__ = TOURNAMENTS_TABLE

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    title = db.Column(db.String(200), nullable=False)
    # Denormalized owner; the source of truth when ownership is repaired.
    owner_id = db.Column(
        db.String(36), db.ForeignKey(f"{IDENTITIES_TABLE}.id"), nullable=False, index=True
    )
    status = db.Column(db.String(16), nullable=False, default=TOURNAMENT_ACTIVE)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    memberships = db.relationship(
        "TournamentMembership",
        backref="tournament",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "owner_id": self.owner_id,
            "status": self.status,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Tournament {self.title}>"


class TournamentMembership(db.Model):
    __tablename__ = MEMBERSHIPS_TABLE
    __table_args__ = (
        db.UniqueConstraint("tournament_id", "user_id", name="uq_membership_user"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tournament_id = db.Column(
        db.String(36),
        db.ForeignKey(f"{TOURNAMENTS_TABLE}.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey(f"{IDENTITIES_TABLE}.id"), nullable=False, index=True
    )
    role = db.Column(db.String(16), nullable=False)
    # Only populated for trainers.
    team_ids = db.Column(db.JSON, nullable=False, default=list)
    invited_by = db.Column(db.String(36))
    accepted_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = db.relationship("Identity", lazy="joined")

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "user_id": self.user_id,
            "role": self.role,
            "team_ids": list(self.team_ids or []),
            "invited_by": self.invited_by,
            "accepted_at": isoformat(self.accepted_at),
            "created_at": isoformat(self.created_at),
        }
        if self.user is not None:
            data["display_name"] = self.user.display_name
            data["email"] = self.user.email
        return data

    def __repr__(self):
        return f"<Membership {self.user_id} {self.role} in {self.tournament_id}>"


class Invitation(db.Model):
    __tablename__ = INVITATIONS_TABLE

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    token = db.Column(db.String(64), unique=True, nullable=False, index=True)
    tournament_id = db.Column(
        db.String(36),
        db.ForeignKey(f"{TOURNAMENTS_TABLE}.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role = db.Column(db.String(16), nullable=False)
    team_ids = db.Column(db.JSON, nullable=False, default=list)
    label = db.Column(db.String(120))
    # 0 means unlimited
    max_uses = db.Column(db.Integer, nullable=False, default=1)
    uses_count = db.Column(db.Integer, nullable=False, default=0)
    expires_at = db.Column(db.DateTime)
    created_by = db.Column(db.String(36), db.ForeignKey(f"{IDENTITIES_TABLE}.id"))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def is_expired(self, now) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def is_exhausted(self) -> bool:
        return self.max_uses > 0 and self.uses_count >= self.max_uses

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "token": self.token,
            "tournament_id": self.tournament_id,
            "role": self.role,
            "team_ids": list(self.team_ids or []),
            "label": self.label,
            "max_uses": self.max_uses,
            "uses_count": self.uses_count,
            "expires_at": isoformat(self.expires_at),
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
            "is_active": bool(self.is_active),
        }

    def __repr__(self):
        return f"<Invitation {self.id} {self.role}>"


class InvitationRedemption(db.Model):
    __tablename__ = REDEMPTIONS_TABLE

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    invitation_id = db.Column(
        db.String(36),
        db.ForeignKey(f"{INVITATIONS_TABLE}.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(db.String(36), nullable=False, index=True)
    redeemed_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class MergeJob(db.Model):
    __tablename__ = MERGE_JOBS_TABLE

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    # No foreign key: the source identity is deleted once the merge completes.
    source_id = db.Column(db.String(36), nullable=False, index=True)
    target_id = db.Column(db.String(36), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="pending")
    merged_tournament_ids = db.Column(db.JSON, nullable=False, default=list)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<MergeJob {self.source_id} -> {self.target_id} {self.status}>"
