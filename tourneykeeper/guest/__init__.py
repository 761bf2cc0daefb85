"""The guest blueprint: usage limits for anonymous identities."""

from flask import Blueprint

bp = Blueprint("guest", __name__, url_prefix="/guest")

from . import routes  # noqa: E402

__all__ = ["routes"]
