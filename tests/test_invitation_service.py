"""Tests for invitation issuing and redemption."""

import os
import shutil
import tempfile
import threading
import unittest
from datetime import timedelta

from tourneykeeper.errors import (
    AlreadyConsumedError,
    AppError,
    DuplicateResourceError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from tourneykeeper.extensions import db
from tourneykeeper.membership.services import InvitationService, MembershipService
from tourneykeeper.models import Invitation, InvitationRedemption, TournamentMembership
from tourneykeeper.tournament.services import TournamentService
from tourneykeeper.utils import utcnow

from tests.helpers import BaseTestCase


class InvitationServiceTestCase(BaseTestCase):
    """Test case for InvitationService."""

    def setUp(self):
        super().setUp()
        self.owner = self.create_identity("owner-1", "owner@example.com", "Olive Owner")
        self.co_admin = self.create_identity("co-1", "co@example.com", "Cole Admin")
        self.alice = self.create_identity("alice-1", "alice@example.com", "Alice")
        self.bob = self.create_identity("bob-1", "bob@example.com", "Bob")
        self.tournament = self.create_tournament(self.owner, title="Spring Open")
        self.add_member(self.tournament, self.co_admin, "co-admin")

    def invite(self, role="viewer", actor=None, **kwargs):
        return InvitationService.create_invitation(
            self.tournament.id, role, (actor or self.owner).id, **kwargs
        )

    def reload(self, invitation):
        return db.session.get(Invitation, invitation.id, populate_existing=True)

    def test_create_invitation(self):
        invitation = self.invite("collaborator", label="  Scorers ")

        self.assertEqual(len(invitation.token), 32)
        self.assertEqual(invitation.max_uses, 1)
        self.assertEqual(invitation.uses_count, 0)
        self.assertEqual(invitation.label, "Scorers")
        self.assertIsNotNone(invitation.expires_at)
        self.assertEqual(
            InvitationService.build_invite_link(invitation.token),
            f"https://tourneys.example/invite?token={invitation.token}",
        )

    def test_single_use_invitation_redeems_once(self):
        invitation = self.invite()

        membership = InvitationService.redeem_invitation(invitation.token, self.alice.id)
        self.assertEqual(membership.role, "viewer")
        self.assertEqual(membership.invited_by, self.owner.id)

        with self.assertRaises(AlreadyConsumedError):
            InvitationService.redeem_invitation(invitation.token, self.bob.id)

        self.assertEqual(self.reload(invitation).uses_count, 1)
        self.assertIsNone(
            MembershipService.get_user_membership(self.tournament.id, self.bob.id)
        )
        redemptions = db.session.execute(
            db.select(InvitationRedemption).filter_by(invitation_id=invitation.id)
        ).scalars().all()
        self.assertEqual([r.user_id for r in redemptions], [self.alice.id])

    def test_claim_use_is_conditional(self):
        invitation = self.invite()
        now = utcnow()

        self.assertTrue(InvitationService.claim_use(invitation.id, now))
        self.assertFalse(InvitationService.claim_use(invitation.id, now))
        db.session.commit()
        self.assertEqual(self.reload(invitation).uses_count, 1)

    def test_unlimited_invitation(self):
        invitation = self.invite(max_uses=0)
        carol = self.create_identity("carol-1")

        for identity in (self.alice, self.bob, carol):
            InvitationService.redeem_invitation(invitation.token, identity.id)

        self.assertEqual(self.reload(invitation).uses_count, 3)

    def test_expired_invitation(self):
        invitation = self.invite()
        invitation.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        with self.assertRaises(ExpiredError):
            InvitationService.redeem_invitation(invitation.token, self.alice.id)
        self.assertEqual(
            InvitationService.validate_invitation(invitation.token),
            {"valid": False, "error": "expired"},
        )

    def test_invitation_without_expiry(self):
        invitation = self.invite(expires_in_days=0)
        self.assertIsNone(invitation.expires_at)
        InvitationService.redeem_invitation(invitation.token, self.alice.id)

    def test_deactivated_invitation(self):
        invitation = self.invite()
        InvitationService.deactivate_invitation(invitation.id, self.co_admin.id)

        with self.assertRaises(ExpiredError):
            InvitationService.redeem_invitation(invitation.token, self.alice.id)
        self.assertEqual(
            InvitationService.validate_invitation(invitation.token)["error"],
            "deactivated",
        )

    def test_existing_member_does_not_use_invitation(self):
        invitation = self.invite()

        with self.assertRaises(DuplicateResourceError):
            InvitationService.redeem_invitation(invitation.token, self.co_admin.id)
        self.assertEqual(self.reload(invitation).uses_count, 0)

    def test_unknown_token(self):
        with self.assertRaises(NotFoundError):
            InvitationService.redeem_invitation("no-such-token", self.alice.id)
        self.assertEqual(
            InvitationService.validate_invitation("no-such-token"),
            {"valid": False, "error": "not_found"},
        )

    def test_deleted_tournament_invitation(self):
        invitation = self.invite()
        TournamentService.delete_tournament(self.tournament.id, self.owner.id)

        with self.assertRaises(NotFoundError):
            InvitationService.redeem_invitation(invitation.token, self.alice.id)

    def test_owner_role_cannot_be_invited(self):
        with self.assertRaises(ValidationError):
            self.invite("owner")

    def test_guest_cannot_invite(self):
        guest = self.create_identity("guest-1", is_anonymous=True)
        self.add_member(self.tournament, guest, "co-admin")

        with self.assertRaises(ForbiddenError):
            self.invite("viewer", actor=guest)

    def test_co_admin_invites_below_own_role(self):
        invitation = self.invite("trainer", actor=self.co_admin, team_ids=["t1"])
        self.assertEqual(invitation.team_ids, ["t1"])

        with self.assertRaises(ForbiddenError):
            self.invite("co-admin", actor=self.co_admin)

    def test_non_privileged_member_cannot_invite(self):
        self.add_member(self.tournament, self.alice, "collaborator")
        with self.assertRaises(ForbiddenError):
            self.invite("viewer", actor=self.alice)

    def test_trainer_invitation_keeps_teams(self):
        invitation = self.invite("trainer", team_ids=["t2", "t1"])

        membership = InvitationService.redeem_invitation(invitation.token, self.alice.id)

        self.assertEqual(membership.role, "trainer")
        self.assertEqual(membership.team_ids, ["t1", "t2"])

    def test_team_ids_ignored_for_other_roles(self):
        invitation = self.invite("viewer", team_ids=["t1"])
        self.assertEqual(invitation.team_ids, [])

    def test_validate_invitation(self):
        invitation = self.invite("collaborator")

        result = InvitationService.validate_invitation(invitation.token)

        self.assertTrue(result["valid"])
        self.assertEqual(result["invitation"]["role"], "collaborator")
        self.assertEqual(result["tournament"]["title"], "Spring Open")
        self.assertEqual(result["inviter"]["display_name"], "Olive Owner")
        self.assertEqual(self.reload(invitation).uses_count, 0)

    def test_list_active_invitations(self):
        used = self.invite()
        open_invite = self.invite(max_uses=5)
        inactive = self.invite()
        InvitationService.redeem_invitation(used.token, self.alice.id)
        InvitationService.deactivate_invitation(inactive.id, self.owner.id)

        invitations = InvitationService.list_active_invitations(
            self.tournament.id, self.co_admin.id
        )

        self.assertEqual([inv.id for inv in invitations], [open_invite.id])

    def test_viewer_cannot_list_invitations(self):
        self.add_member(self.tournament, self.alice, "viewer")
        with self.assertRaises(ForbiddenError):
            InvitationService.list_active_invitations(self.tournament.id, self.alice.id)


class ConcurrentRedemptionTestCase(BaseTestCase):
    """Two clients redeem the same single-use invitation at once."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        db_path = os.path.join(self.tmpdir, "invitations.db")
        self.extra_config = {"SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}"}
        super().setUp()
        owner = self.create_identity("owner-1", "owner@example.com", "Olive Owner")
        self.alice_id = self.create_identity("alice-1", "alice@example.com").id
        self.bob_id = self.create_identity("bob-1", "bob@example.com").id
        tournament = self.create_tournament(owner, title="Spring Open")
        self.tournament_id = tournament.id
        invitation = InvitationService.create_invitation(
            tournament.id, "viewer", owner.id, max_uses=1
        )
        self.invitation_id = invitation.id
        self.token = invitation.token
        db.session.close()

    def tearDown(self):
        super().tearDown()
        with self.app.app_context():
            db.engine.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_only_one_of_two_concurrent_redemptions_succeeds(self):
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def redeem(identity_id):
            with self.app.app_context():
                barrier.wait()
                try:
                    InvitationService.redeem_invitation(self.token, identity_id)
                    outcome = "joined"
                except AppError as e:
                    outcome = type(e)
            with lock:
                outcomes.append(outcome)

        threads = [
            threading.Thread(target=redeem, args=(identity_id,))
            for identity_id in (self.alice_id, self.bob_id)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(len(outcomes), 2)
        self.assertEqual(outcomes.count("joined"), 1)
        self.assertIn(AlreadyConsumedError, outcomes)
        invitation = db.session.get(Invitation, self.invitation_id, populate_existing=True)
        self.assertEqual(invitation.uses_count, 1)
        members = db.session.execute(
            db.select(TournamentMembership.user_id).where(
                TournamentMembership.tournament_id == self.tournament_id,
                TournamentMembership.user_id.in_([self.alice_id, self.bob_id]),
            )
        ).scalars().all()
        self.assertEqual(len(members), 1)
        redemptions = db.session.execute(
            db.select(InvitationRedemption).filter_by(invitation_id=self.invitation_id)
        ).scalars().all()
        self.assertEqual(len(redemptions), 1)


if __name__ == "__main__":
    unittest.main()
