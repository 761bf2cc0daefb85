"""Turn an auth redirect into a session, an error, or a redirect target.

A dispatch walks a fixed sequence of checks and stops at the first that
applies:

1. the provider reported an error in the URL;
2. a session already exists;
3. a PKCE code is present and is exchanged;
4. an access/refresh token pair is present and installed;
5. nothing usable was found.

An interrupted provider call (``TransientAbortError``) restarts the whole
sequence a bounded number of times. The flow as a whole is bounded by a
timeout. Once an outcome is settled, later results are ignored.
"""

from __future__ import annotations

import asyncio
import enum
import hashlib
import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from tourneykeeper.constants import (
    AUTH_FLOW_TIMEOUT,
    AUTH_RETRY_DELAY,
    MAX_AUTH_RETRIES,
    REDIRECT_HOME,
    REDIRECT_INVITE,
    REDIRECT_LOGIN,
    REDIRECT_SET_PASSWORD,
    SET_SESSION_TIMEOUT,
    VERIFY_SESSION_TIMEOUT,
)
from tourneykeeper.errors import AuthTimeoutError, TransientAbortError

from .utils import (
    ERROR_MESSAGES,
    AuthErrorKind,
    classify_provider_message,
    safe_redirect_path,
    sanitize_message,
)

if TYPE_CHECKING:
    from tourneykeeper.storage import GuestIdentityCache, RecoveryIntent

    from .params import AuthParams
    from .provider import IdentityProviderClient, Session

logger = logging.getLogger(__name__)


class FlowState(str, enum.Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    ALREADY_AUTHENTICATED = "already_authenticated"
    EXCHANGING_CODE = "exchanging_code"
    SETTING_SESSION = "setting_session"
    VERIFYING_LINK = "verifying_link"
    NO_DATA = "no_data"
    REDIRECTING = "redirecting"
    ERROR = "error"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = (FlowState.REDIRECTING, FlowState.ERROR, FlowState.TIMED_OUT)

# Email link types accepted by the confirm endpoint.
OTP_SIGNUP = "signup"
OTP_EMAIL = "email"
OTP_MAGICLINK = "magiclink"
OTP_RECOVERY = "recovery"
OTP_INVITE = "invite"
OTP_TYPES = (OTP_SIGNUP, OTP_EMAIL, OTP_MAGICLINK, OTP_RECOVERY, OTP_INVITE)


@dataclass
class FlowOutcome:
    state: FlowState
    redirect_to: str | None = None
    error_kind: AuthErrorKind | None = None
    message: str | None = None
    session: Session | None = None

    @property
    def is_error(self) -> bool:
        return self.state in (FlowState.ERROR, FlowState.TIMED_OUT)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "redirect_to": self.redirect_to,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
            "identity_id": self.session.identity_id if self.session else None,
        }


class CodeLedger:
    """Process-wide single-flight record of PKCE code exchanges.

    The first caller to claim a code performs the exchange; anyone else
    claiming the same code receives the same future and waits for it. The
    futures are thread-safe so waiters can live on other event loops.
    Codes are kept hashed.
    """

    def __init__(self, max_entries: int = 1024) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, Future] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def _key(code: str) -> str:
        return hashlib.sha256(code.encode("utf-8")).hexdigest()

    def claim(self, code: str) -> tuple[Future, bool]:
        """Return the future for ``code`` and whether the caller owns it."""
        key = self._key(code)
        with self._lock:
            future = self._entries.get(key)
            if future is not None:
                return future, False
            future = Future()
            self._entries[key] = future
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
            return future, True

    def settle(
        self, code: str, future: Future, error_kind: AuthErrorKind | None = None
    ) -> None:
        """Publish the exchange result: None on success, else the failure kind."""
        if not future.done():
            future.set_result(error_kind)

    def release(self, code: str, future: Future) -> None:
        """Forget an exchange that never completed so a retry may claim it."""
        with self._lock:
            if self._entries.get(self._key(code)) is future:
                del self._entries[self._key(code)]
        if not future.done():
            future.set_exception(TransientAbortError("Code exchange interrupted."))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


code_ledger = CodeLedger()


class AuthFlowDispatcher:
    """Drives one auth redirect to a terminal outcome."""

    def __init__(
        self,
        provider: IdentityProviderClient,
        recovery: RecoveryIntent,
        guest_cache: GuestIdentityCache,
        ledger: CodeLedger | None = None,
        max_retries: int = MAX_AUTH_RETRIES,
        retry_delay: float = AUTH_RETRY_DELAY,
        flow_timeout: float = AUTH_FLOW_TIMEOUT,
        set_session_timeout: float = SET_SESSION_TIMEOUT,
        verify_timeout: float = VERIFY_SESSION_TIMEOUT,
    ) -> None:
        self.provider = provider
        self.recovery = recovery
        self.guest_cache = guest_cache
        self.ledger = ledger or code_ledger
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.flow_timeout = flow_timeout
        self.set_session_timeout = set_session_timeout
        self.verify_timeout = verify_timeout

        self.state = FlowState.IDLE
        self.history: list[FlowState] = [FlowState.IDLE]
        self.outcome: FlowOutcome | None = None
        self._attempt = 0

    # State bookkeeping

    @property
    def settled(self) -> bool:
        return self.outcome is not None

    def _transition(self, state: FlowState) -> None:
        if self.settled:
            return
        self.state = state
        self.history.append(state)

    def _is_current(self, attempt: int) -> bool:
        return not self.settled and attempt == self._attempt

    def _settle(self, outcome: FlowOutcome) -> FlowOutcome:
        if self.settled:
            logger.debug(f"Ignoring late auth outcome {outcome.state.value}")
            return self.outcome
        self._transition(outcome.state)
        self.outcome = outcome
        return outcome

    def _error(self, kind: AuthErrorKind, message: str | None = None) -> FlowOutcome:
        return FlowOutcome(
            state=FlowState.ERROR,
            error_kind=kind,
            message=message or ERROR_MESSAGES[kind],
        )

    # Entry points

    async def dispatch(self, params: AuthParams) -> FlowOutcome:
        """Run the callback flow for the resolved redirect parameters."""
        if self.settled:
            return self.outcome
        self._transition(FlowState.RESOLVING)
        return await self._bounded(self._run_with_retry(params))

    async def confirm(
        self, token_hash: str | None, otp_type: str | None, redirect_to: str | None = None
    ) -> FlowOutcome:
        """Handle an email confirmation link carrying a token hash."""
        if self.settled:
            return self.outcome
        self._transition(FlowState.RESOLVING)
        return await self._bounded(
            self._confirm_with_retry(token_hash, otp_type, redirect_to)
        )

    async def _bounded(self, flow) -> FlowOutcome:
        try:
            outcome = await asyncio.wait_for(flow, timeout=self.flow_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Auth flow timed out after {self.flow_timeout}s")
            outcome = FlowOutcome(
                state=FlowState.TIMED_OUT,
                redirect_to=REDIRECT_LOGIN,
                error_kind=AuthErrorKind.TIMEOUT,
                message=ERROR_MESSAGES[AuthErrorKind.TIMEOUT],
            )
        return self._settle(outcome)

    async def _retrying(self, step) -> FlowOutcome:
        for attempt in range(self.max_retries + 1):
            self._attempt = attempt
            try:
                return await step(attempt)
            except AuthTimeoutError as e:
                logger.warning(f"Auth attempt {attempt + 1} timed out: {e.message}")
                return self._error(AuthErrorKind.TIMEOUT)
            except TransientAbortError as e:
                logger.debug(f"Auth attempt {attempt + 1} aborted: {e.message}")
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay)
        logger.warning(
            f"Auth flow aborted {self.max_retries + 1} times, sending user home"
        )
        return FlowOutcome(state=FlowState.REDIRECTING, redirect_to=REDIRECT_HOME)

    async def _run_with_retry(self, params: AuthParams) -> FlowOutcome:
        return await self._retrying(lambda attempt: self._run_once(params, attempt))

    async def _confirm_with_retry(
        self, token_hash: str | None, otp_type: str | None, redirect_to: str | None
    ) -> FlowOutcome:
        return await self._retrying(
            lambda attempt: self._confirm_once(token_hash, otp_type, redirect_to, attempt)
        )

    # Callback steps

    async def _run_once(self, params: AuthParams, attempt: int) -> FlowOutcome:
        if params.error_description:
            return self._error(
                AuthErrorKind.PROVIDER, sanitize_message(params.error_description)
            )

        session = await self._existing_session()
        if session is not None:
            self._transition(FlowState.ALREADY_AUTHENTICATED)
            return self._authenticated(session, params.type, attempt)

        if params.code:
            return await self._exchange_code(params, attempt)

        if params.access_token and params.refresh_token:
            return await self._install_tokens(params, attempt)

        self._transition(FlowState.NO_DATA)
        return FlowOutcome(state=FlowState.REDIRECTING, redirect_to=REDIRECT_LOGIN)

    async def _existing_session(self) -> Session | None:
        response = await self.provider.get_session()
        if response.error:
            logger.info(f"No usable session: {response.error.message}")
            return None
        return response.data

    async def _exchange_code(self, params: AuthParams, attempt: int) -> FlowOutcome:
        self._transition(FlowState.EXCHANGING_CODE)
        future, owner = self.ledger.claim(params.code)
        if not owner:
            return await self._await_duplicate_exchange(future, params, attempt)

        try:
            response = await self.provider.exchange_code_for_session(params.code)
        except BaseException:
            self.ledger.release(params.code, future)
            raise
        if response.error:
            kind = classify_provider_message(response.error.message)
            self.ledger.settle(params.code, future, kind)
            logger.warning(f"Code exchange failed ({kind.value}): {response.error.message}")
            return self._error(kind)
        self.ledger.settle(params.code, future)
        return await self._verify_and_finish(params.type, attempt)

    async def _await_duplicate_exchange(
        self, future: Future, params: AuthParams, attempt: int
    ) -> FlowOutcome:
        # A TransientAbortError from the first exchange propagates so this
        # caller retries and may claim the code itself.
        failure = await asyncio.wrap_future(future)
        if failure is not None:
            logger.info(f"Concurrent code exchange failed ({failure.value})")
            return self._error(failure)
        session = await self._existing_session()
        if session is None:
            logger.info("Duplicate code exchange with no session to fall back on")
            return self._error(AuthErrorKind.ALREADY_CONSUMED)
        logger.info("Code exchange already handled by a concurrent request")
        self._transition(FlowState.ALREADY_AUTHENTICATED)
        return self._authenticated(session, params.type, attempt)

    async def _install_tokens(self, params: AuthParams, attempt: int) -> FlowOutcome:
        self._transition(FlowState.SETTING_SESSION)
        try:
            response = await asyncio.wait_for(
                self.provider.set_session(params.access_token, params.refresh_token),
                timeout=self.set_session_timeout,
            )
        except (asyncio.TimeoutError, AuthTimeoutError):
            logger.warning("Setting the session timed out")
            return self._error(AuthErrorKind.TIMEOUT)

        if response.error:
            kind = classify_provider_message(response.error.message)
            logger.warning(f"Setting the session failed ({kind.value}): {response.error.message}")
            return self._error(kind)
        return await self._verify_and_finish(params.type, attempt)

    async def _verify_and_finish(self, link_type: str | None, attempt: int) -> FlowOutcome:
        try:
            session = await asyncio.wait_for(
                self._existing_session(), timeout=self.verify_timeout
            )
        except (asyncio.TimeoutError, AuthTimeoutError):
            logger.warning("Verifying the new session timed out")
            return self._error(AuthErrorKind.TIMEOUT)
        if session is None:
            logger.error("Provider accepted the credentials but no session exists")
            return self._error(AuthErrorKind.SESSION_CREATE_FAILED)
        return self._authenticated(session, link_type, attempt)

    def _authenticated(
        self, session: Session, link_type: str | None, attempt: int
    ) -> FlowOutcome:
        target = REDIRECT_HOME
        if self._is_current(attempt):
            if link_type == OTP_RECOVERY or self.recovery.is_pending():
                self.recovery.clear()
                target = REDIRECT_SET_PASSWORD
            self.guest_cache.clear()
        logger.info(f"Auth flow established session for {session.identity_id}")
        return FlowOutcome(
            state=FlowState.REDIRECTING, redirect_to=target, session=session
        )

    # Email links

    async def _confirm_once(
        self,
        token_hash: str | None,
        otp_type: str | None,
        redirect_to: str | None,
        attempt: int,
    ) -> FlowOutcome:
        if not token_hash or otp_type not in OTP_TYPES:
            return self._error(AuthErrorKind.INVALID_LINK)

        if otp_type == OTP_INVITE:
            query = urlencode({"token": token_hash})
            return FlowOutcome(
                state=FlowState.REDIRECTING, redirect_to=f"{REDIRECT_INVITE}?{query}"
            )

        self._transition(FlowState.VERIFYING_LINK)
        try:
            response = await asyncio.wait_for(
                self.provider.verify_otp(token_hash, otp_type),
                timeout=self.set_session_timeout,
            )
        except (asyncio.TimeoutError, AuthTimeoutError):
            logger.warning("Verifying the email link timed out")
            return self._error(AuthErrorKind.TIMEOUT)

        if response.error:
            kind = classify_provider_message(response.error.message)
            logger.warning(f"Email link rejected ({kind.value}): {response.error.message}")
            if kind == AuthErrorKind.LOGIN_FAILED:
                kind = AuthErrorKind.INVALID_LINK
            return self._error(kind)

        if otp_type == OTP_RECOVERY:
            return await self._verify_and_finish(OTP_RECOVERY, attempt)

        outcome = await self._verify_and_finish(None, attempt)
        if outcome.state == FlowState.REDIRECTING and outcome.redirect_to == REDIRECT_HOME:
            outcome.redirect_to = safe_redirect_path(redirect_to)
        return outcome

    def mark_recovery_pending(self) -> None:
        """Record that the provider signalled a password recovery."""
        self.recovery.mark()
