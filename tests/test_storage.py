"""Tests for the client-scoped stores."""

import unittest

from flask import session

from tourneykeeper.constants import PENDING_MERGE_KEY, RECOVERY_INTENT_KEY, TAB_COOKIE_NAME
from tourneykeeper.storage import (
    GuestIdentityCache,
    MemoryStore,
    PendingMerge,
    RecoveryIntent,
    local_store,
    save_tab_cookie,
    tab_store,
)

from tests.helpers import BaseTestCase


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class MemoryStoreTestCase(unittest.TestCase):
    """Test case for expiry handling."""

    def setUp(self):
        self.clock = FakeClock()
        self.store = MemoryStore(clock=self.clock)

    def test_value_without_ttl_persists(self):
        self.store.set("k", {"a": 1})
        self.clock.now += 10**9
        self.assertEqual(self.store.get("k"), {"a": 1})

    def test_expired_value_is_removed_on_read(self):
        self.store.set("k", "v", ttl=30)
        self.clock.now += 29
        self.assertEqual(self.store.get("k"), "v")
        self.clock.now += 1
        self.assertIsNone(self.store.get("k"))
        self.assertIsNone(self.store._read("k"))

    def test_default(self):
        self.assertEqual(self.store.get("missing", "fallback"), "fallback")

    def test_stale_recovery_intent_is_ignored(self):
        intent = RecoveryIntent(self.store, ttl=600)
        intent.mark()
        self.assertTrue(intent.is_pending())

        self.clock.now += 601
        self.assertFalse(intent.is_pending())
        self.assertIsNone(self.store._read(RECOVERY_INTENT_KEY))

    def test_recovery_intent_clear(self):
        intent = RecoveryIntent(self.store)
        intent.mark()
        intent.clear()
        self.assertFalse(intent.is_pending())

    def test_guest_identity_cache(self):
        cache = GuestIdentityCache(self.store, ttl=60)
        cache.set({"id": "guest-1"})
        self.assertEqual(cache.get(), {"id": "guest-1"})
        self.clock.now += 61
        self.assertIsNone(cache.get())

    def test_pending_merge(self):
        pending = PendingMerge(self.store)
        self.assertIsNone(pending.get())
        pending.set("guest-1")
        self.assertEqual(pending.get(), "guest-1")
        pending.clear()
        self.assertIsNone(pending.get())

    def test_pending_merge_expires(self):
        pending = PendingMerge(self.store, ttl=3600)
        pending.set("guest-1")
        self.clock.now += 3600
        self.assertIsNone(pending.get())
        self.assertIsNone(self.store._read(PENDING_MERGE_KEY))


class SessionStoreTestCase(BaseTestCase):
    """Test case for the long-lived and tab-scoped client stores."""

    def test_scopes_are_separate(self):
        with self.app.test_request_context("/"):
            local_store().set("k", "long-lived")
            tab_store().set("k", "tab")

            self.assertEqual(local_store().get("k"), "long-lived")
            self.assertEqual(tab_store().get("k"), "tab")
            self.assertTrue(session.permanent)
            self.assertEqual(set(session), {"tk.local"})

            tab_store().remove("k")
            self.assertIsNone(tab_store().get("k"))
            self.assertEqual(local_store().get("k"), "long-lived")

    def test_expired_tab_entry(self):
        clock = FakeClock()
        with self.app.test_request_context("/"):
            store = tab_store()
            store.clock = clock
            store.set("flag", True, ttl=5)
            clock.now += 5
            self.assertIsNone(store.get("flag"))
            self.assertIsNone(store._read("flag"))

    def test_tab_cookie_has_no_expiry(self):
        with self.app.test_request_context("/"):
            tab_store().set("flag", True)
            response = save_tab_cookie(self.app.response_class())

        cookies = response.headers.getlist("Set-Cookie")
        tab_cookie = [c for c in cookies if c.startswith(f"{TAB_COOKIE_NAME}=")]
        self.assertEqual(len(tab_cookie), 1)
        self.assertNotIn("Expires", tab_cookie[0])
        self.assertNotIn("Max-Age", tab_cookie[0])
        self.assertIn("HttpOnly", tab_cookie[0])

    def test_tab_cookie_round_trip(self):
        with self.app.test_request_context("/"):
            tab_store().set("flag", "on")
            value = tab_store().dump()

        headers = {"Cookie": f"{TAB_COOKIE_NAME}={value}"}
        with self.app.test_request_context("/", headers=headers):
            self.assertEqual(tab_store().get("flag"), "on")

    def test_tampered_tab_cookie_is_ignored(self):
        headers = {"Cookie": f"{TAB_COOKIE_NAME}=not-a-signed-value"}
        with self.app.test_request_context("/", headers=headers):
            self.assertIsNone(tab_store().get("flag"))

    def test_cleared_tab_store_deletes_cookie(self):
        with self.app.test_request_context("/"):
            tab_store().set("flag", True)
            tab_store().clear()
            response = save_tab_cookie(self.app.response_class())

        tab_cookie = [
            c
            for c in response.headers.getlist("Set-Cookie")
            if c.startswith(f"{TAB_COOKIE_NAME}=")
        ]
        self.assertEqual(len(tab_cookie), 1)
        self.assertIn("Max-Age=0", tab_cookie[0])

if __name__ == "__main__":
    unittest.main()
