from flask import g, jsonify, request

from tourneykeeper.auth.decorators import login_required
from tourneykeeper.errors import ValidationError
from tourneykeeper.guest.services import GuestQuotaService
from tourneykeeper.utils import form_error_message, parse_bool

from . import bp
from .forms import TournamentForm
from .services import TournamentService


@bp.route("/", methods=["GET"])
@login_required
def list_tournaments():
    """Tournaments owned by the current identity."""
    include_inactive = parse_bool(request.args.get("include_inactive"))
    tournaments = TournamentService.list_owned(g.user.id, include_inactive)
    return jsonify({"tournaments": [t.to_dict() for t in tournaments]})


@bp.route("/", methods=["POST"])
@login_required
def create_tournament():
    form = TournamentForm()
    if not form.validate_on_submit():
        raise ValidationError(form_error_message(form))
    tournament = TournamentService.create_tournament(g.user, form.title.data)
    return (
        jsonify(
            {
                "tournament": tournament.to_dict(),
                "quota": GuestQuotaService.get_quota_for_identity(g.user),
            }
        ),
        201,
    )


@bp.route("/<string:tournament_id>/archive", methods=["POST"])
@login_required
def archive_tournament(tournament_id):
    tournament = TournamentService.archive_tournament(tournament_id, g.user.id)
    return jsonify({"status": "success", "tournament": tournament.to_dict()})


@bp.route("/<string:tournament_id>", methods=["DELETE"])
@login_required
def delete_tournament(tournament_id):
    tournament = TournamentService.delete_tournament(tournament_id, g.user.id)
    return jsonify({"status": "success", "tournament": tournament.to_dict()})
