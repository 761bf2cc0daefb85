from flask import current_app, g, jsonify

from tourneykeeper.auth.decorators import login_required
from tourneykeeper.errors import ForbiddenError, ValidationError
from tourneykeeper.permissions import assignable_roles, can_view_members
from tourneykeeper.utils import form_error_message

from . import bp
from .forms import (
    InvitationForm,
    RoleChangeForm,
    TrainerTeamsForm,
    TransferOwnershipForm,
)
from .services import InvitationService, MembershipService


def _validated(form):
    if not form.validate_on_submit():
        raise ValidationError(form_error_message(form))
    return form


@bp.route("/tournaments/<string:tournament_id>/members", methods=["GET"])
@login_required
def list_members(tournament_id):
    """List the tournament's members for owners and co-admins."""
    MembershipService.get_tournament(tournament_id)
    actor = MembershipService.require_actor(tournament_id, g.user.id)
    if not can_view_members(actor.role):
        raise ForbiddenError("You cannot view the member list.")
    members = MembershipService.get_tournament_members(tournament_id)
    return jsonify(
        {
            "members": [m.to_dict() for m in members],
            "my_role": actor.role,
            "assignable_roles": assignable_roles(actor.role),
        }
    )


@bp.route("/tournaments/<string:tournament_id>/co-admins", methods=["GET"])
@login_required
def list_co_admins(tournament_id):
    """Candidates for an ownership transfer."""
    MembershipService.require_actor(tournament_id, g.user.id)
    co_admins = MembershipService.get_co_admins(tournament_id)
    return jsonify({"co_admins": [m.to_dict() for m in co_admins]})


@bp.route("/tournaments/<string:tournament_id>/invitations", methods=["POST"])
@login_required(allow_guest=False)
def create_invitation(tournament_id):
    """Issue an invitation link."""
    form = _validated(InvitationForm())
    invitation = InvitationService.create_invitation(
        tournament_id,
        form.role.data,
        g.user.id,
        team_ids=form.team_ids.data,
        max_uses=form.max_uses.data,
        expires_in_days=form.expires_in_days.data,
        label=form.label.data,
    )
    return (
        jsonify(
            {
                "invitation": invitation.to_dict(),
                "invite_link": InvitationService.build_invite_link(invitation.token),
            }
        ),
        201,
    )


@bp.route("/tournaments/<string:tournament_id>/invitations", methods=["GET"])
@login_required
def list_invitations(tournament_id):
    """Invitations that can still be redeemed."""
    invitations = InvitationService.list_active_invitations(tournament_id, g.user.id)
    return jsonify({"invitations": [inv.to_dict() for inv in invitations]})


@bp.route("/tournaments/<string:tournament_id>/transfer", methods=["POST"])
@login_required
def transfer_ownership(tournament_id):
    """Make a co-admin the owner; the current owner becomes co-admin."""
    form = _validated(TransferOwnershipForm())
    new_owner = MembershipService.transfer_ownership(
        tournament_id, form.new_owner_id.data, g.user.id
    )
    return jsonify({"status": "success", "owner": new_owner.to_dict()})


@bp.route("/invitations/<string:token>", methods=["GET"])
def validate_invitation(token):
    """Preview an invitation before accepting it."""
    return jsonify(InvitationService.validate_invitation(token))


@bp.route("/invitations/<string:token>/redeem", methods=["POST"])
@login_required
def redeem_invitation(token):
    """Join a tournament with an invitation."""
    membership = InvitationService.redeem_invitation(token, g.user.id)
    return jsonify({"status": "success", "membership": membership.to_dict()}), 201


@bp.route("/invitations/<string:invitation_id>/deactivate", methods=["POST"])
@login_required
def deactivate_invitation(invitation_id):
    invitation = InvitationService.deactivate_invitation(invitation_id, g.user.id)
    current_app.logger.info(f"{g.user.id} deactivated invitation {invitation.id}")
    return jsonify({"status": "success", "invitation": invitation.to_dict()})


@bp.route("/memberships/<string:membership_id>/role", methods=["POST"])
@login_required
def change_role(membership_id):
    form = _validated(RoleChangeForm())
    membership = MembershipService.change_role(
        membership_id, form.role.data, g.user.id, team_ids=form.team_ids.data
    )
    return jsonify({"status": "success", "membership": membership.to_dict()})


@bp.route("/memberships/<string:membership_id>/teams", methods=["POST"])
@login_required
def update_trainer_teams(membership_id):
    form = _validated(TrainerTeamsForm())
    membership = MembershipService.update_trainer_teams(
        membership_id, form.team_ids.data, g.user.id
    )
    return jsonify({"status": "success", "membership": membership.to_dict()})


@bp.route("/memberships/<string:membership_id>/remove", methods=["POST"])
@login_required
def remove_member(membership_id):
    MembershipService.remove_member(membership_id, g.user.id)
    return jsonify({"status": "success"})
