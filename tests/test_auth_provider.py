"""Tests for the HTTP identity provider client."""

from __future__ import annotations

import base64
import json
import unittest

import httpx

from tourneykeeper.auth.provider import HttpIdentityProvider, Session
from tourneykeeper.constants import CODE_VERIFIER_KEY, PROVIDER_SESSION_KEY
from tourneykeeper.errors import AuthTimeoutError, TransientAbortError
from tourneykeeper.storage import MemoryStore

BASE_URL = "https://auth.example/auth/v1"
NOW = 1_700_000_000.0


def fake_jwt(exp: float) -> str:
    def encode(data: dict) -> str:
        raw = base64.urlsafe_b64encode(json.dumps(data).encode()).decode()
        return raw.rstrip("=")

    return f"{encode({'alg': 'none'})}.{encode({'exp': exp, 'sub': 'u-1'})}.sig"


def token_payload(user_id: str = "u-1") -> dict:
    return {
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "expires_in": 3600,
        "user": {"id": user_id, "email": "alice@example.com"},
    }


class HttpIdentityProviderTestCase(unittest.IsolatedAsyncioTestCase):
    """Test case for HttpIdentityProvider."""

    def setUp(self) -> None:
        self.store = MemoryStore(clock=lambda: NOW)
        self.requests: list[httpx.Request] = []

    def make_provider(self, handler) -> HttpIdentityProvider:
        def recording(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        return HttpIdentityProvider(
            BASE_URL,
            "anon-key",
            store=self.store,
            transport=httpx.MockTransport(recording),
            clock=lambda: NOW,
        )

    async def test_pkce_exchange_stores_session(self) -> None:
        self.store.set(CODE_VERIFIER_KEY, "verifier-1")
        provider = self.make_provider(lambda request: httpx.Response(200, json=token_payload()))

        response = await provider.exchange_code_for_session("code-1")

        self.assertIsNone(response.error)
        self.assertEqual(response.data.identity_id, "u-1")
        self.assertEqual(response.data.expires_at, NOW + 3600)
        request = self.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.url.path, "/auth/v1/token")
        self.assertEqual(request.url.params["grant_type"], "pkce")
        self.assertEqual(request.headers["apikey"], "anon-key")
        self.assertEqual(
            json.loads(request.content),
            {"auth_code": "code-1", "code_verifier": "verifier-1"},
        )
        self.assertIsNone(self.store.get(CODE_VERIFIER_KEY))
        self.assertEqual(provider.current_session().access_token, "access-1")

    async def test_rejected_exchange_keeps_verifier(self) -> None:
        self.store.set(CODE_VERIFIER_KEY, "verifier-1")
        provider = self.make_provider(
            lambda request: httpx.Response(
                400,
                json={
                    "error": "invalid_grant",
                    "error_description": "Flow state has already been used",
                },
            )
        )

        response = await provider.exchange_code_for_session("code-1")

        self.assertIsNone(response.data)
        self.assertEqual(response.error.message, "Flow state has already been used")
        self.assertEqual(response.error.status, 400)
        self.assertEqual(self.store.get(CODE_VERIFIER_KEY), "verifier-1")
        self.assertIsNone(provider.current_session())

    async def test_error_message_fallbacks(self) -> None:
        provider = self.make_provider(
            lambda request: httpx.Response(403, json={"msg": "Token has expired"})
        )
        response = await provider.verify_otp("hash-1", "email")
        self.assertEqual(response.error.message, "Token has expired")

        provider = self.make_provider(lambda request: httpx.Response(502, text="Bad gateway"))
        response = await provider.verify_otp("hash-1", "email")
        self.assertEqual(response.error.message, "Bad gateway")

    async def test_connection_failure_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection reset", request=request)

        provider = self.make_provider(handler)
        with self.assertRaises(TransientAbortError):
            await provider.exchange_code_for_session("code-1")

    async def test_timeout_is_reported(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        provider = self.make_provider(handler)
        with self.assertRaises(AuthTimeoutError):
            await provider.set_session("access-1", "refresh-1")

    async def test_set_session_reads_user(self) -> None:
        access_token = fake_jwt(NOW + 600)
        provider = self.make_provider(
            lambda request: httpx.Response(200, json={"id": "u-1", "email": "a@example.com"})
        )

        response = await provider.set_session(access_token, "refresh-1")

        self.assertEqual(response.data.identity_id, "u-1")
        self.assertEqual(response.data.expires_at, NOW + 600)
        request = self.requests[0]
        self.assertEqual(request.url.path, "/auth/v1/user")
        self.assertEqual(request.headers["Authorization"], f"Bearer {access_token}")
        self.assertEqual((await provider.get_session()).data.identity_id, "u-1")

    async def test_verify_otp_installs_session(self) -> None:
        provider = self.make_provider(lambda request: httpx.Response(200, json=token_payload()))

        response = await provider.verify_otp("hash-1", "magiclink")

        self.assertEqual(response.data.identity_id, "u-1")
        self.assertEqual(
            json.loads(self.requests[0].content),
            {"type": "magiclink", "token_hash": "hash-1"},
        )

    async def test_expired_session_is_dropped(self) -> None:
        stale = Session("access-1", "refresh-1", expires_at=NOW - 1, identity_id="u-1")
        self.store.set(PROVIDER_SESSION_KEY, stale.to_dict())
        provider = self.make_provider(lambda request: httpx.Response(200))

        self.assertIsNone(provider.current_session())
        self.assertIsNone(self.store.get(PROVIDER_SESSION_KEY))

    async def test_sign_out(self) -> None:
        session = Session("access-1", "refresh-1", expires_at=NOW + 60, identity_id="u-1")
        self.store.set(PROVIDER_SESSION_KEY, session.to_dict())
        provider = self.make_provider(lambda request: httpx.Response(204))

        response = await provider.sign_out()

        self.assertIsNone(response.error)
        self.assertIsNone(provider.current_session())
        self.assertEqual(self.requests[0].url.path, "/auth/v1/logout")
        self.assertEqual(self.requests[0].headers["Authorization"], "Bearer access-1")

        await provider.sign_out()
        self.assertEqual(len(self.requests), 1)


if __name__ == "__main__":
    unittest.main()
