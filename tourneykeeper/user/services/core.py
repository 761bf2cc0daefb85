from __future__ import annotations

from typing import Any

from flask import current_app

from tourneykeeper.constants import GLOBAL_ROLE_USER
from tourneykeeper.errors import ProviderResponseError
from tourneykeeper.extensions import db
from tourneykeeper.models import Identity
from tourneykeeper.utils import utcnow


def normalize_email(email: str | None) -> str | None:
    """Lower-case and trim an email address; empty becomes None."""
    if not email:
        return None
    email = email.strip().lower()
    return email or None


def mask_email(email: str) -> str:
    """Mask an email for display, e.g. j***@example.com."""
    local, _, domain = email.partition("@")
    if not domain:
        return email
    return f"{local[:1]}***@{domain}"


def smart_display_name(user: dict[str, Any]) -> str:
    """Pick a display name from a provider user payload.

    Prefers the name in the user metadata, then the local part of the
    email, then 'Guest'.
    """
    metadata = user.get("user_metadata") or {}
    for key in ("full_name", "name", "display_name"):
        if metadata.get(key):
            return str(metadata[key]).strip()[:120]
    if user.get("display_name"):
        return str(user["display_name"]).strip()[:120]
    email = user.get("email")
    if email:
        return email.split("@", 1)[0][:120]
    return "Guest"


def get_identity(identity_id: str | None) -> Identity | None:
    if not identity_id:
        return None
    return db.session.get(Identity, identity_id)


def find_identity_by_email(email: str | None) -> Identity | None:
    email = normalize_email(email)
    if email is None:
        return None
    return db.session.execute(
        db.select(Identity).filter_by(email=email)
    ).scalar_one_or_none()


def create_anonymous_identity(display_name: str | None = None) -> Identity:
    """Create a guest identity that is not yet bound to a credential."""
    identity = Identity(
        display_name=(display_name or "Guest").strip()[:120] or "Guest",
        global_role=GLOBAL_ROLE_USER,
        is_anonymous=True,
    )
    db.session.add(identity)
    db.session.commit()
    current_app.logger.info(f"Created anonymous identity {identity.id}")
    return identity


def sync_provider_identity(user: dict[str, Any]) -> Identity:
    """Create or refresh the local identity for a provider user payload."""
    identity_id = user.get("id")
    if not identity_id:
        raise ProviderResponseError()

    email = normalize_email(user.get("email"))
    identity = db.session.get(Identity, identity_id)
    if identity is None:
        identity = Identity(id=identity_id, global_role=GLOBAL_ROLE_USER)
        identity.display_name = smart_display_name(user)
        db.session.add(identity)

    if email and identity.email != email:
        holder = find_identity_by_email(email)
        if holder is not None and holder.id != identity.id:
            # Merge decides who ends up with the address.
            current_app.logger.warning(
                f"Email for identity {identity.id} already belongs to {holder.id}"
            )
        else:
            identity.email = email

    identity.is_anonymous = bool(user.get("is_anonymous", False))
    metadata = user.get("user_metadata") or {}
    if metadata.get("avatar_url"):
        identity.avatar_url = metadata["avatar_url"]
    identity.last_login_at = utcnow()
    db.session.commit()
    return identity
