import unittest

from tourneykeeper import create_app
from tourneykeeper.auth.dispatcher import code_ledger
from tourneykeeper.constants import ROLE_OWNER
from tourneykeeper.extensions import db
from tourneykeeper.models import Identity, Tournament, TournamentMembership

from tests.mock_utils import FakeIdentityProvider, make_user


class BaseTestCase(unittest.TestCase):
    """App with an in-memory database and a fake identity provider."""

    extra_config: dict = {}

    def setUp(self):
        self.provider = FakeIdentityProvider()
        config = {
            "TESTING": True,
            "WTF_CSRF_ENABLED": False,
            "SERVER_NAME": "localhost",
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "IDENTITY_PROVIDER": self.provider,
            "AUTH_RETRY_DELAY": 0,
            "APP_BASE_URL": "https://tourneys.example",
        }
        config.update(self.extra_config)
        self.app = create_app(config)
        self.client = self.app.test_client()
        self.app_context = self.app.app_context()
        self.app_context.push()
        code_ledger.clear()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.app_context.pop()

    def create_identity(
        self,
        identity_id=None,
        email=None,
        display_name="Test User",
        is_anonymous=False,
    ):
        """Creates an identity in the database and returns it."""
        identity = Identity(
            email=email,
            display_name=display_name,
            is_anonymous=is_anonymous,
        )
        if identity_id:
            identity.id = identity_id
        db.session.add(identity)
        db.session.commit()
        return identity

    def create_tournament(self, owner, title="Summer Cup", status="active"):
        """Creates a tournament with its owner membership."""
        tournament = Tournament(title=title, owner_id=owner.id, status=status)
        db.session.add(tournament)
        db.session.flush()
        db.session.add(
            TournamentMembership(
                tournament_id=tournament.id, user_id=owner.id, role=ROLE_OWNER
            )
        )
        db.session.commit()
        return tournament

    def add_member(self, tournament, identity, role, team_ids=None):
        membership = TournamentMembership(
            tournament_id=tournament.id,
            user_id=identity.id,
            role=role,
            team_ids=team_ids or [],
        )
        db.session.add(membership)
        db.session.commit()
        return membership

    def login_as(self, identity):
        """Make the fake provider report a session for the identity."""
        self.provider.sign_in(make_user(identity.id, identity.email, identity.display_name))

    def logout(self):
        self.provider.session = None
