"""Mock utilities for the identity provider."""

import asyncio
import time
from typing import Any, Optional

from tourneykeeper.auth.provider import (
    IdentityProviderClient,
    ProviderError,
    ProviderResponse,
    Session,
)
from tourneykeeper.errors import TransientAbortError


def make_user(user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> dict:
    user: dict[str, Any] = {"id": user_id, "email": email, "is_anonymous": False}
    if name:
        user["user_metadata"] = {"full_name": name}
    return user


def make_session(user: dict, ttl: float = 3600) -> Session:
    return Session(
        access_token=f"access-{user['id']}",
        refresh_token=f"refresh-{user['id']}",
        expires_at=time.time() + ttl,
        identity_id=user["id"],
        user=user,
    )


class FakeIdentityProvider(IdentityProviderClient):
    """In-memory identity provider with hooks for failure injection."""

    def __init__(self) -> None:
        self.session: Optional[Session] = None
        self.codes: dict[str, dict] = {}
        self.consumed: set[str] = set()
        self.otp_tokens: dict[str, dict] = {}
        self.token_users: dict[str, dict] = {}

        self.exchange_calls = 0
        self.set_session_calls = 0
        self.verify_calls = 0
        self.sign_out_calls = 0

        self.abort_exchanges = 0
        self.exchange_delay = 0.0
        self.set_session_delay = 0.0
        self.exchange_error: Optional[str] = None
        self.drop_session_after_exchange = False

    # Test setup

    def add_code(self, code: str, user: dict) -> None:
        self.codes[code] = user

    def add_otp(self, token_hash: str, user: dict) -> None:
        self.otp_tokens[token_hash] = user

    def add_tokens(self, access_token: str, user: dict) -> None:
        self.token_users[access_token] = user

    def sign_in(self, user: dict) -> Session:
        self.session = make_session(user)
        return self.session

    # IdentityProviderClient

    def current_session(self) -> Optional[Session]:
        if self.session is None or self.session.is_expired():
            return None
        return self.session

    async def get_session(self) -> ProviderResponse:
        return ProviderResponse(data=self.current_session())

    async def exchange_code_for_session(self, code: str) -> ProviderResponse:
        self.exchange_calls += 1
        if self.abort_exchanges:
            self.abort_exchanges -= 1
            raise TransientAbortError()
        if self.exchange_delay:
            await asyncio.sleep(self.exchange_delay)
        if self.exchange_error:
            return ProviderResponse(error=ProviderError(self.exchange_error, 400))
        if code in self.consumed:
            return ProviderResponse(
                error=ProviderError("invalid flow state, flow state has already been used", 400)
            )
        user = self.codes.get(code)
        if user is None:
            return ProviderResponse(error=ProviderError("auth code not found", 404))
        self.consumed.add(code)
        if self.drop_session_after_exchange:
            return ProviderResponse(data=None)
        return ProviderResponse(data=self.sign_in(user))

    async def set_session(self, access_token: str, refresh_token: str) -> ProviderResponse:
        self.set_session_calls += 1
        if self.set_session_delay:
            await asyncio.sleep(self.set_session_delay)
        user = self.token_users.get(access_token)
        if user is None:
            return ProviderResponse(error=ProviderError("invalid JWT: token is expired", 401))
        return ProviderResponse(data=self.sign_in(user))

    async def verify_otp(self, token_hash: str, otp_type: str) -> ProviderResponse:
        self.verify_calls += 1
        user = self.otp_tokens.pop(token_hash, None)
        if user is None:
            return ProviderResponse(
                error=ProviderError("Email link is invalid or has expired", 403)
            )
        return ProviderResponse(data=self.sign_in(user))

    async def sign_out(self) -> ProviderResponse:
        self.sign_out_calls += 1
        self.session = None
        return ProviderResponse()
