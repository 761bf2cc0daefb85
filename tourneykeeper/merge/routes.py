from flask import current_app, g, jsonify

from tourneykeeper.auth.decorators import login_required
from tourneykeeper.errors import ValidationError
from tourneykeeper.storage import tab_store
from tourneykeeper.user.services import UserService
from tourneykeeper.utils import form_error_message

from . import bp
from .forms import MergePromptForm
from .services import MergeCoordinator, check_email_exists


@bp.route("/prompt", methods=["POST"])
@login_required
def prompt():
    """Called when a guest registers with an email that is already taken."""
    form = MergePromptForm()
    if not form.validate_on_submit():
        raise ValidationError(form_error_message(form))
    if not g.user.is_anonymous:
        raise ValidationError("Only guest accounts can be merged.")

    email = UserService.normalize_email(form.email.data)
    if not check_email_exists(email):
        return jsonify({"merge_required": False})

    coordinator = MergeCoordinator(tab_store())
    coordinator.prompt(g.user.id)
    current_app.logger.info(f"Guest {g.user.id} offered a merge into an existing account")
    return jsonify(
        {
            "merge_required": True,
            "state": coordinator.state,
            "email": UserService.mask_email(email),
        }
    )


@bp.route("", methods=["POST"])
@login_required(allow_guest=False)
def run_merge():
    """Run, or retry, the pending merge into the signed-in account."""
    coordinator = MergeCoordinator(tab_store())
    result = coordinator.run(g.user.id)
    body = dict(result, state=coordinator.state, attempts=coordinator.attempts)
    return jsonify(body), 200 if result.get("success") else 500


@bp.route("/cancel", methods=["POST"])
@login_required
def cancel():
    MergeCoordinator(tab_store()).cancel()
    return jsonify({"status": "success"})
