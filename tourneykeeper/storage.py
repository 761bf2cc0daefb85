"""Client-scoped key/value storage with expiry.

Two scopes are used by the auth flow. The long-lived store lives in the
permanent Flask session and survives browser restarts; it holds the cached
guest identity. The tab store lives in its own signed cookie sent without an
expiry, so the browser drops it when the browsing session ends; it holds
short-lived flags such as a pending password recovery or merge.
Entries are stored as ``{"value": ..., "expires_at": ...}`` and a read of an
expired entry removes it.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

from flask import current_app, request, session
from itsdangerous import BadSignature, URLSafeTimedSerializer

from .constants import (
    GUEST_CACHE_TTL,
    GUEST_IDENTITY_KEY,
    PENDING_MERGE_KEY,
    PENDING_MERGE_TTL,
    RECOVERY_INTENT_KEY,
    RECOVERY_INTENT_TTL,
    TAB_COOKIE_NAME,
)

BUCKET_ENVIRON_KEY = "tourneykeeper.tab_bucket"
DIRTY_ENVIRON_KEY = "tourneykeeper.tab_dirty"


class KeyValueStore(ABC):
    """Interface shared by the storage backends."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self.clock = clock or time.time

    @abstractmethod
    def _read(self, key: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    def _write(self, key: str, entry: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._read(key)
        if entry is None:
            return default
        expires_at = entry.get("expires_at")
        if expires_at is not None and self.clock() >= expires_at:
            self.remove(key)
            return default
        return entry.get("value", default)

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = self.clock() + ttl if ttl is not None else None
        self._write(key, {"value": value, "expires_at": expires_at})


class MemoryStore(KeyValueStore):
    """In-process store, used by background work and tests."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        super().__init__(clock)
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _read(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._data.get(key)
            return dict(entry) if entry is not None else None

    def _write(self, key: str, entry: dict[str, Any]) -> None:
        with self._lock:
            self._data[key] = entry

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class SessionStore(KeyValueStore):
    """Store kept in the signed Flask session cookie under a namespace."""

    def __init__(
        self,
        namespace: str,
        permanent: bool = False,
        clock: Callable[[], float] | None = None,
    ) -> None:
        super().__init__(clock)
        self.namespace = namespace
        self.permanent = permanent

    def _bucket(self) -> dict[str, Any]:
        return session.get(self.namespace) or {}

    def _read(self, key: str) -> dict[str, Any] | None:
        return self._bucket().get(key)

    def _write(self, key: str, entry: dict[str, Any]) -> None:
        bucket = dict(self._bucket())
        bucket[key] = entry
        session[self.namespace] = bucket
        if self.permanent:
            session.permanent = True

    def remove(self, key: str) -> None:
        bucket = dict(self._bucket())
        if bucket.pop(key, None) is not None:
            session[self.namespace] = bucket


class TabCookieStore(KeyValueStore):
    """Store kept in a signed cookie of its own that carries no expiry.

    The bucket is loaded from the request cookie once per request and
    written back by ``save_tab_cookie`` when it changed.
    """

    salt = "tourneykeeper.tab"

    def _serializer(self) -> URLSafeTimedSerializer:
        return URLSafeTimedSerializer(current_app.secret_key, salt=self.salt)

    def _bucket(self) -> dict[str, Any]:
        environ = request.environ
        if BUCKET_ENVIRON_KEY not in environ:
            environ[BUCKET_ENVIRON_KEY] = self._load()
        return environ[BUCKET_ENVIRON_KEY]

    def _load(self) -> dict[str, Any]:
        raw = request.cookies.get(TAB_COOKIE_NAME)
        if not raw:
            return {}
        try:
            data = self._serializer().loads(raw)
        except BadSignature:
            current_app.logger.warning("Ignoring tab cookie with a bad signature")
            return {}
        return data if isinstance(data, dict) else {}

    def _mark_dirty(self) -> None:
        request.environ[DIRTY_ENVIRON_KEY] = True

    def _read(self, key: str) -> dict[str, Any] | None:
        return self._bucket().get(key)

    def _write(self, key: str, entry: dict[str, Any]) -> None:
        self._bucket()[key] = entry
        self._mark_dirty()

    def remove(self, key: str) -> None:
        if self._bucket().pop(key, None) is not None:
            self._mark_dirty()

    def clear(self) -> None:
        self._bucket().clear()
        self._mark_dirty()

    def dump(self) -> str:
        return self._serializer().dumps(self._bucket())


def save_tab_cookie(response):
    """Write the tab store back to its cookie if this request changed it."""
    if not request.environ.get(DIRTY_ENVIRON_KEY):
        return response
    store = TabCookieStore()
    config = current_app.config
    if not store._bucket():
        response.delete_cookie(
            TAB_COOKIE_NAME, path=config.get("SESSION_COOKIE_PATH") or "/"
        )
        return response
    # No max_age or expires: the browser keeps it for this session only.
    response.set_cookie(
        TAB_COOKIE_NAME,
        store.dump(),
        path=config.get("SESSION_COOKIE_PATH") or "/",
        httponly=True,
        secure=config.get("SESSION_COOKIE_SECURE", False),
        samesite=config.get("SESSION_COOKIE_SAMESITE") or "Lax",
    )
    return response


def local_store() -> SessionStore:
    """Long-lived client store."""
    return SessionStore("tk.local", permanent=True)


def tab_store() -> TabCookieStore:
    """Store scoped to the current browser session."""
    return TabCookieStore()


class GuestIdentityCache:
    """The locally cached anonymous identity."""

    def __init__(self, store: KeyValueStore, ttl: float = GUEST_CACHE_TTL) -> None:
        self.store = store
        self.ttl = ttl

    def get(self) -> dict[str, Any] | None:
        return self.store.get(GUEST_IDENTITY_KEY)

    def set(self, identity: dict[str, Any]) -> None:
        self.store.set(GUEST_IDENTITY_KEY, identity, ttl=self.ttl)

    def clear(self) -> None:
        self.store.remove(GUEST_IDENTITY_KEY)


class RecoveryIntent:
    """Flag recording that a password recovery was started in this tab."""

    def __init__(self, store: KeyValueStore, ttl: float = RECOVERY_INTENT_TTL) -> None:
        self.store = store
        self.ttl = ttl

    def mark(self) -> None:
        self.store.set(RECOVERY_INTENT_KEY, True, ttl=self.ttl)

    def is_pending(self) -> bool:
        return bool(self.store.get(RECOVERY_INTENT_KEY, False))

    def clear(self) -> None:
        self.store.remove(RECOVERY_INTENT_KEY)


class PendingMerge:
    """Guest identity waiting to be merged once its owner signs in."""

    def __init__(self, store: KeyValueStore, ttl: float = PENDING_MERGE_TTL) -> None:
        self.store = store
        self.ttl = ttl

    def get(self) -> str | None:
        return self.store.get(PENDING_MERGE_KEY)

    def set(self, source_id: str) -> None:
        self.store.set(PENDING_MERGE_KEY, source_id, ttl=self.ttl)

    def clear(self) -> None:
        self.store.remove(PENDING_MERGE_KEY)
