"""The membership blueprint: members, roles, invitations and ownership."""

from flask import Blueprint

bp = Blueprint("membership", __name__)

from . import routes  # noqa: E402

__all__ = ["routes"]
