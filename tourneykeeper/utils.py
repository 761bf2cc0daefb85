"""Utility functions for the application."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, as stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """Generate a new primary key."""
    return str(uuid.uuid4())


def isoformat(value: datetime | None) -> str | None:
    """Serialize a stored datetime for JSON responses."""
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()


def parse_bool(value: Any, default: bool = False) -> bool:
    """Read a boolean from an environment variable or config value."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ["true", "1", "t"]


def form_error_message(form: Any) -> str:
    """Flatten WTForms errors into one message."""
    messages = []
    for field_name, errors in form.errors.items():
        for error in errors:
            messages.append(f"{field_name}: {error}")
    return "; ".join(messages) or "Invalid request."
