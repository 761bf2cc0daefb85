"""Forms for the merge blueprint."""

from flask_wtf import FlaskForm
from wtforms import StringField
from wtforms.validators import DataRequired, Email, Length


class MergePromptForm(FlaskForm):
    """Email the guest tried to register with."""

    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)])
