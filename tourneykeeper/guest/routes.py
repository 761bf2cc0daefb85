from flask import g, jsonify

from . import bp
from .services import GuestQuotaService


@bp.route("/quota", methods=["GET"])
def quota():
    """Tournament allowance for the current identity."""
    return jsonify(GuestQuotaService.get_quota_for_identity(g.user))
