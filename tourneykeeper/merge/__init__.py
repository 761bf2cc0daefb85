"""The merge blueprint: claim a guest's tournaments with an existing account."""

from flask import Blueprint

bp = Blueprint("merge", __name__, url_prefix="/merge")

from . import routes  # noqa: E402

__all__ = ["routes"]
