"""Forms for the tournament blueprint."""

from flask_wtf import FlaskForm
from wtforms import StringField
from wtforms.validators import DataRequired, Length


class TournamentForm(FlaskForm):
    """Form for creating a tournament."""

    title = StringField("Tournament Name", validators=[DataRequired(), Length(max=200)])
