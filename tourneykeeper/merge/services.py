"""Merge a guest identity's work into a permanent account.

When a guest tries to register with an email that already belongs to an
account, they sign in to that account instead and everything the guest
owned is reparented onto it. Reparenting runs in batches, each committed on
its own and recorded on a ``MergeJob``, so a merge that stops part way can
be retried and picks up where it left off.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from tourneykeeper.constants import (
    MAX_MERGE_ATTEMPTS,
    MERGE_STATE_KEY,
    MERGE_STATE_TTL,
    ROLE_OWNER,
)
from tourneykeeper.errors import (
    NotFoundError,
    PartialUpdateError,
    ValidationError,
)
from tourneykeeper.extensions import db
from tourneykeeper.models import (
    Identity,
    Invitation,
    InvitationRedemption,
    MergeJob,
    Tournament,
    TournamentMembership,
)
from tourneykeeper.storage import PendingMerge
from tourneykeeper.user.services import UserService

if TYPE_CHECKING:
    from tourneykeeper.core.types import MergeResult
    from tourneykeeper.storage import KeyValueStore

JOB_PENDING = "pending"
JOB_FAILED = "failed"
JOB_COMPLETED = "completed"


def check_email_exists(email: str | None) -> bool:
    """Whether the email belongs to a permanent account that a guest could merge into."""
    if not current_app.config["MERGE_ACCOUNTS_ENABLED"]:
        return False
    identity = UserService.find_identity_by_email(email)
    return identity is not None and not identity.is_anonymous


class MergeService:
    """Reparents a guest identity's data onto a permanent identity."""

    @staticmethod
    def _get_job(source_id: str, target_id: str) -> MergeJob | None:
        return db.session.execute(
            db.select(MergeJob)
            .filter_by(source_id=source_id, target_id=target_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @staticmethod
    def merged_count(source_id: str, target_id: str) -> int:
        """Tournaments already moved for this pair, including by failed runs."""
        job = MergeService._get_job(source_id, target_id)
        return len(job.merged_tournament_ids or []) if job is not None else 0

    @staticmethod
    def _result(job: MergeJob) -> MergeResult:
        return {
            "success": True,
            "tournaments_merged": len(job.merged_tournament_ids or []),
            "tournament_ids": list(job.merged_tournament_ids or []),
            "error": None,
        }

    @staticmethod
    def _reparent_tournament(
        tournament: Tournament, source_id: str, target_id: str
    ) -> None:
        """Make the target the owner of one of the guest's tournaments."""
        memberships = {
            m.user_id: m
            for m in db.session.execute(
                db.select(TournamentMembership).filter_by(tournament_id=tournament.id)
            ).scalars()
        }
        source_membership = memberships.get(source_id)
        target_membership = memberships.get(target_id)

        if target_membership is not None:
            target_membership.role = ROLE_OWNER
            target_membership.team_ids = []
            if source_membership is not None:
                db.session.delete(source_membership)
        elif source_membership is not None:
            source_membership.user_id = target_id
            source_membership.role = ROLE_OWNER
            source_membership.team_ids = []
        else:
            db.session.add(
                TournamentMembership(
                    tournament_id=tournament.id,
                    user_id=target_id,
                    role=ROLE_OWNER,
                    team_ids=[],
                )
            )
        tournament.owner_id = target_id

    @staticmethod
    def _move_remaining_references(source_id: str, target_id: str) -> None:
        """Memberships in other people's tournaments, issued invitations, redemptions."""
        target_tournaments = set(
            db.session.execute(
                db.select(TournamentMembership.tournament_id).filter_by(user_id=target_id)
            ).scalars()
        )
        memberships = db.session.execute(
            db.select(TournamentMembership).filter_by(user_id=source_id)
        ).scalars().all()
        for membership in memberships:
            if membership.tournament_id in target_tournaments:
                # The account already belongs to this tournament; keep its role.
                db.session.delete(membership)
            else:
                membership.user_id = target_id

        db.session.execute(
            db.update(Invitation)
            .where(Invitation.created_by == source_id)
            .values(created_by=target_id)
            .execution_options(synchronize_session=False)
        )
        db.session.execute(
            db.update(InvitationRedemption)
            .where(InvitationRedemption.user_id == source_id)
            .values(user_id=target_id)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def merge_accounts(
        source_id: str, target_id: str, batch_size: int | None = None
    ) -> MergeResult:
        """Move everything the guest owns to the target, then delete the guest.

        Safe to call again after a failure: tournaments already moved are
        recorded on the job and are not counted twice. Calling it after a
        completed merge returns the recorded result.
        """
        if not source_id or not target_id:
            raise ValidationError("Both accounts are required to merge.")
        if source_id == target_id:
            raise ValidationError("An account cannot be merged into itself.")
        batch_size = batch_size or current_app.config["MERGE_BATCH_SIZE"]

        job = MergeService._get_job(source_id, target_id)
        if job is not None and job.status == JOB_COMPLETED:
            return MergeService._result(job)

        source = db.session.get(Identity, source_id)
        target = db.session.get(Identity, target_id)
        if source is None:
            raise NotFoundError("Guest account not found.")
        if target is None:
            raise NotFoundError("Account not found.")
        if not source.is_anonymous:
            raise ValidationError("Only guest accounts can be merged.")
        if target.is_anonymous:
            raise ValidationError("Guest accounts cannot receive a merge.")

        if job is None:
            job = MergeJob(source_id=source_id, target_id=target_id, merged_tournament_ids=[])
            db.session.add(job)
        job.status = JOB_PENDING
        job.attempts = (job.attempts or 0) + 1
        db.session.commit()
        job_id = job.id

        try:
            while True:
                batch = db.session.execute(
                    db.select(Tournament)
                    .filter_by(owner_id=source_id)
                    .order_by(Tournament.created_at)
                    .limit(batch_size)
                ).scalars().all()
                if not batch:
                    break
                for tournament in batch:
                    MergeService._reparent_tournament(tournament, source_id, target_id)
                merged = set(job.merged_tournament_ids or [])
                merged.update(t.id for t in batch)
                job.merged_tournament_ids = sorted(merged)
                db.session.commit()

            MergeService._move_remaining_references(source_id, target_id)
            db.session.delete(source)
            job.status = JOB_COMPLETED
            job.last_error = None
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            job = db.session.get(MergeJob, job_id, populate_existing=True)
            job.status = JOB_FAILED
            job.last_error = str(e)[:255]
            db.session.commit()
            current_app.logger.error(
                f"Merge of {source_id} into {target_id} stopped after "
                f"{len(job.merged_tournament_ids or [])} tournaments: {e}"
            )
            raise PartialUpdateError(
                "The merge stopped part way. Retrying will continue where it left off."
            ) from e

        current_app.logger.info(
            f"Merged guest {source_id} into {target_id}: "
            f"{len(job.merged_tournament_ids or [])} tournaments"
        )
        return MergeService._result(job)


class MergeCoordinator:
    """Per-client merge progress: prompt, merging, then success or error.

    From ``error`` the merge may be retried in place up to a bounded number
    of attempts without asking the user to sign in again.
    """

    PROMPT = "prompt"
    MERGING = "merging"
    SUCCESS = "success"
    ERROR = "error"

    def __init__(self, store: KeyValueStore, max_attempts: int = MAX_MERGE_ATTEMPTS):
        self.store = store
        self.pending = PendingMerge(store)
        self.max_attempts = max_attempts

    def _progress(self) -> dict:
        return self.store.get(MERGE_STATE_KEY) or {"state": None, "attempts": 0}

    def _save(self, state: str, attempts: int) -> None:
        self.store.set(
            MERGE_STATE_KEY,
            {"state": state, "attempts": attempts},
            ttl=MERGE_STATE_TTL,
        )

    @property
    def state(self) -> str | None:
        return self._progress()["state"]

    @property
    def attempts(self) -> int:
        return self._progress()["attempts"]

    def prompt(self, source_id: str) -> None:
        """Remember the guest so the merge can run after sign-in."""
        self.pending.set(source_id)
        self._save(self.PROMPT, 0)

    def cancel(self) -> None:
        self.pending.clear()
        self.store.remove(MERGE_STATE_KEY)

    def run(self, target_id: str) -> MergeResult:
        progress = self._progress()
        source_id = self.pending.get()
        if source_id is None or progress["state"] not in (self.PROMPT, self.ERROR):
            raise ValidationError("There is no account merge waiting.")
        if progress["attempts"] >= self.max_attempts:
            raise ValidationError(
                "The merge failed too many times. Please contact support."
            )

        attempts = progress["attempts"] + 1
        self._save(self.MERGING, attempts)
        try:
            result = MergeService.merge_accounts(source_id, target_id)
        except PartialUpdateError as e:
            self._save(self.ERROR, attempts)
            return {
                "success": False,
                "tournaments_merged": MergeService.merged_count(source_id, target_id),
                "error": e.message,
            }
        except Exception:
            self._save(self.ERROR, attempts)
            raise

        self._save(self.SUCCESS, attempts)
        self.pending.clear()
        return result
