"""Helpers for turning provider responses into user-facing outcomes."""

import enum
import re
import unicodedata
from urllib.parse import urlsplit

from tourneykeeper.constants import MAX_ERROR_MESSAGE_LENGTH, REDIRECT_HOME


class AuthErrorKind(str, enum.Enum):
    PROVIDER = "provider"
    EXPIRED = "expired"
    ALREADY_CONSUMED = "already_consumed"
    LOGIN_FAILED = "login_failed"
    SESSION_CREATE_FAILED = "session_create_failed"
    TIMEOUT = "timeout"
    INVALID_LINK = "invalid_link"


ERROR_MESSAGES = {
    AuthErrorKind.EXPIRED: "This link has expired. Please request a new one.",
    AuthErrorKind.ALREADY_CONSUMED: (
        "This link has already been used. If you just signed in, you are all set."
    ),
    AuthErrorKind.LOGIN_FAILED: "Sign-in failed. Please try again.",
    AuthErrorKind.SESSION_CREATE_FAILED: "Your session could not be created.",
    AuthErrorKind.TIMEOUT: "The sign-in service took too long to respond.",
    AuthErrorKind.INVALID_LINK: "This link is invalid.",
}

_WHITESPACE = re.compile(r"\s+")


def classify_provider_message(message):
    """Map a provider error message onto the error kind shown to the user."""
    text = (message or "").lower()
    if "expired" in text:
        return AuthErrorKind.EXPIRED
    if "used" in text or "invalid" in text or "already" in text:
        return AuthErrorKind.ALREADY_CONSUMED
    return AuthErrorKind.LOGIN_FAILED


def sanitize_message(message):
    """Clean provider text for display: no control characters, bounded length."""
    text = _WHITESPACE.sub(" ", message or "")
    text = "".join(ch for ch in text if unicodedata.category(ch)[0] != "C").strip()
    if len(text) > MAX_ERROR_MESSAGE_LENGTH:
        text = text[: MAX_ERROR_MESSAGE_LENGTH - 1].rstrip() + "…"
    return text or ERROR_MESSAGES[AuthErrorKind.LOGIN_FAILED]


def safe_redirect_path(target, default=REDIRECT_HOME):
    """Only allow same-site relative paths as post-login destinations."""
    if not target or not target.startswith("/") or target.startswith("//"):
        return default
    parts = urlsplit(target)
    if parts.scheme or parts.netloc or "\\" in target:
        return default
    return target
