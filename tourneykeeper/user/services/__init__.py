from .core import (
    create_anonymous_identity as _create_anonymous_identity,
    find_identity_by_email as _find_identity_by_email,
    get_identity as _get_identity,
    mask_email as _mask_email,
    normalize_email as _normalize_email,
    smart_display_name as _smart_display_name,
    sync_provider_identity as _sync_provider_identity,
)


class UserService:
    """Service class for identity records."""

    get_identity = staticmethod(_get_identity)
    find_identity_by_email = staticmethod(_find_identity_by_email)
    create_anonymous_identity = staticmethod(_create_anonymous_identity)
    sync_provider_identity = staticmethod(_sync_provider_identity)
    smart_display_name = staticmethod(_smart_display_name)
    normalize_email = staticmethod(_normalize_email)
    mask_email = staticmethod(_mask_email)


__all__ = ["UserService"]
