"""Forms for the membership blueprint."""

from flask_wtf import FlaskForm
from wtforms import Field, IntegerField, SelectField, StringField
from wtforms.validators import DataRequired, Length, NumberRange, Optional
from wtforms.widgets import TextInput

from tourneykeeper.constants import (
    DEFAULT_INVITATION_EXPIRY_DAYS,
    DEFAULT_INVITATION_MAX_USES,
    TOURNAMENT_ROLES,
)

ROLE_CHOICES = [(role, role) for role in TOURNAMENT_ROLES]


class ListField(Field):
    """A repeated value, such as a JSON array of ids."""

    widget = TextInput()

    def __init__(self, label=None, validators=None, **kwargs):
        kwargs.setdefault("default", list)
        super().__init__(label, validators, **kwargs)

    def process_formdata(self, valuelist):
        self.data = [str(value) for value in valuelist if value not in (None, "")]

    def _value(self):
        return ",".join(self.data or [])


class InvitationForm(FlaskForm):
    """Form for issuing an invitation link."""

    role = SelectField("Role", choices=ROLE_CHOICES, validators=[DataRequired()])
    team_ids = ListField("Teams")
    max_uses = IntegerField(
        "Max uses",
        default=DEFAULT_INVITATION_MAX_USES,
        validators=[Optional(), NumberRange(min=0, max=1000)],
    )
    expires_in_days = IntegerField(
        "Expires in (days)",
        default=DEFAULT_INVITATION_EXPIRY_DAYS,
        validators=[Optional(), NumberRange(min=0, max=365)],
    )
    label = StringField("Label", validators=[Optional(), Length(max=120)])


class RoleChangeForm(FlaskForm):
    """Form for changing a member's role."""

    role = SelectField("Role", choices=ROLE_CHOICES, validators=[DataRequired()])
    team_ids = ListField("Teams")


class TrainerTeamsForm(FlaskForm):
    """Form for reassigning a trainer's teams."""

    team_ids = ListField("Teams")


class TransferOwnershipForm(FlaskForm):
    """Form for handing the tournament to a co-admin."""

    new_owner_id = StringField("New owner", validators=[DataRequired(), Length(max=36)])
