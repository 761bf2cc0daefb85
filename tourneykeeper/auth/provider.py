"""Client for the external identity provider.

The provider owns credentials and sessions; this module only asks it to turn
redirect material (codes, token pairs, email link hashes) into a session and
keeps the resulting session in the client's long-lived store. Every call
returns a ``ProviderResponse`` whose ``error`` carries the provider's own
message. Transport failures are raised instead: timeouts as
``AuthTimeoutError`` and interrupted requests as ``TransientAbortError``.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Callable

import httpx
from flask import current_app

from tourneykeeper.constants import (
    CODE_VERIFIER_KEY,
    PROVIDER_HTTP_TIMEOUT,
    PROVIDER_SESSION_KEY,
)
from tourneykeeper.errors import AppError, AuthTimeoutError, TransientAbortError
from tourneykeeper.storage import local_store

if TYPE_CHECKING:
    from tourneykeeper.storage import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class Session:
    access_token: str
    refresh_token: str
    expires_at: float | None = None
    identity_id: str | None = None
    user: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=data.get("expires_at"),
            identity_id=data.get("identity_id"),
            user=data.get("user") or {},
        )

    @classmethod
    def from_token_payload(
        cls, payload: dict[str, Any], now: float | None = None
    ) -> Session:
        """Build a session from a provider token response."""
        now = now if now is not None else time.time()
        expires_at = payload.get("expires_at")
        if expires_at is None and payload.get("expires_in") is not None:
            expires_at = now + float(payload["expires_in"])
        if expires_at is None:
            expires_at = _jwt_expiry(payload["access_token"])
        user = payload.get("user") or {}
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            expires_at=expires_at,
            identity_id=user.get("id"),
            user=user,
        )


@dataclass
class ProviderError:
    message: str
    status: int | None = None


@dataclass
class ProviderResponse:
    data: Any = None
    error: ProviderError | None = None


def _jwt_expiry(token: str) -> float | None:
    """Read the ``exp`` claim from a JWT without verifying it."""
    try:
        payload = token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (IndexError, ValueError):
        return None
    exp = claims.get("exp")
    return float(exp) if exp is not None else None


class IdentityProviderClient(ABC):
    """Operations the auth flow needs from the identity provider."""

    @abstractmethod
    async def get_session(self) -> ProviderResponse:
        """Return the current, unexpired session or ``None`` as data."""

    @abstractmethod
    async def set_session(self, access_token: str, refresh_token: str) -> ProviderResponse:
        ...

    @abstractmethod
    async def exchange_code_for_session(self, code: str) -> ProviderResponse:
        ...

    @abstractmethod
    async def verify_otp(self, token_hash: str, otp_type: str) -> ProviderResponse:
        ...

    @abstractmethod
    async def sign_out(self) -> ProviderResponse:
        ...

    @abstractmethod
    def current_session(self) -> Session | None:
        """Peek at the stored session without contacting the provider."""


class HttpIdentityProvider(IdentityProviderClient):
    """Talks to a GoTrue-compatible auth REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        store: KeyValueStore,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = PROVIDER_HTTP_TIMEOUT,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.store = store
        self.transport = transport
        self.timeout = timeout
        self.clock = clock or time.time

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            for key in ("error_description", "msg", "message", "error"):
                if body.get(key):
                    return str(body[key])
        return f"HTTP {response.status_code}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> ProviderResponse:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Identity provider timed out on {path}: {e}")
            raise AuthTimeoutError() from e
        except httpx.TransportError as e:
            logger.warning(f"Identity provider request to {path} aborted: {e}")
            raise TransientAbortError() from e

        if response.is_error:
            message = self._error_message(response)
            logger.info(f"Identity provider rejected {path}: {message}")
            return ProviderResponse(
                error=ProviderError(message=message, status=response.status_code)
            )
        if not response.content:
            return ProviderResponse()
        return ProviderResponse(data=response.json())

    def _store_session(self, session: Session) -> None:
        self.store.set(PROVIDER_SESSION_KEY, session.to_dict())

    def current_session(self) -> Session | None:
        data = self.store.get(PROVIDER_SESSION_KEY)
        if not data:
            return None
        session = Session.from_dict(data)
        if session.is_expired(self.clock()):
            self.store.remove(PROVIDER_SESSION_KEY)
            return None
        return session

    async def get_session(self) -> ProviderResponse:
        return ProviderResponse(data=self.current_session())

    async def set_session(self, access_token: str, refresh_token: str) -> ProviderResponse:
        response = await self._request(
            "GET", "/user", headers={"Authorization": f"Bearer {access_token}"}
        )
        if response.error:
            return response
        user = response.data or {}
        session = Session(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_jwt_expiry(access_token),
            identity_id=user.get("id"),
            user=user,
        )
        self._store_session(session)
        return ProviderResponse(data=session)

    async def _token_grant(self, grant_type: str, body: dict[str, Any]) -> ProviderResponse:
        response = await self._request(
            "POST", "/token", params={"grant_type": grant_type}, json=body
        )
        if response.error:
            return response
        session = Session.from_token_payload(response.data or {}, now=self.clock())
        self._store_session(session)
        return ProviderResponse(data=session)

    async def exchange_code_for_session(self, code: str) -> ProviderResponse:
        verifier = self.store.get(CODE_VERIFIER_KEY)
        response = await self._token_grant(
            "pkce", {"auth_code": code, "code_verifier": verifier}
        )
        if not response.error:
            self.store.remove(CODE_VERIFIER_KEY)
        return response

    async def verify_otp(self, token_hash: str, otp_type: str) -> ProviderResponse:
        response = await self._request(
            "POST", "/verify", json={"type": otp_type, "token_hash": token_hash}
        )
        if response.error:
            return response
        payload = response.data or {}
        if not payload.get("access_token"):
            return response
        session = Session.from_token_payload(payload, now=self.clock())
        self._store_session(session)
        return ProviderResponse(data=session)

    async def sign_out(self) -> ProviderResponse:
        session = self.current_session()
        self.store.remove(PROVIDER_SESSION_KEY)
        if session is None:
            return ProviderResponse()
        return await self._request(
            "POST",
            "/logout",
            headers={"Authorization": f"Bearer {session.access_token}"},
        )


def get_identity_provider(required: bool = True) -> IdentityProviderClient | None:
    """Return the provider client for the current request."""
    provider = current_app.config.get("IDENTITY_PROVIDER")
    if provider is not None:
        return provider
    base_url = current_app.config.get("AUTH_PROVIDER_URL")
    if not base_url:
        if required:
            raise AppError("Sign-in is not configured.", 503)
        return None
    return HttpIdentityProvider(
        base_url,
        current_app.config.get("AUTH_PROVIDER_API_KEY"),
        store=local_store(),
    )
