"""Forms for the auth blueprint."""

from flask_wtf import FlaskForm  # type: ignore
from wtforms import StringField
from wtforms.validators import Length, Optional


class CallbackForm(FlaskForm):
    """Callback location as seen by the client."""

    href = StringField("Location", validators=[Optional(), Length(max=4096)])
    hash = StringField("Hash", validators=[Optional(), Length(max=4096)])
    search = StringField("Search", validators=[Optional(), Length(max=4096)])


class ConfirmForm(FlaskForm):
    """Email confirmation link parameters."""

    token_hash = StringField("Token", validators=[Optional(), Length(max=512)])
    type = StringField("Type", validators=[Optional(), Length(max=32)])
    redirect_to = StringField("Redirect", validators=[Optional(), Length(max=512)])


class GuestForm(FlaskForm):
    """Starting a guest session."""

    display_name = StringField("Name", validators=[Optional(), Length(max=120)])
