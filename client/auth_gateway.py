"""Sign-in, sign-out and session state for the presentation layer.

All session state changes go through AuthGateway. The state itself lives
in a SessionContext created at application startup and handed to the
gateway, so there is exactly one per running app and no module globals.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from backend.api.schemas import UserResponse
from backend.errors import AuthServiceUnreachable, FlashcardsError, StorageUnavailable, Unauthorized
from client.models import AuthResponse, OAuthProvider, SessionState, SignedIn, SignedOut
from client.oauth import OAuthFlowHandler, parse_callback_url
from client.remote import AuthApiClient
from client.session_store import OAUTH_PROVIDER_KEY, SESSION_TOKEN_KEY, SessionStore

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionState], Awaitable[None]]


class SessionContext:
    """The application's single SessionState plus the store it is persisted to."""

    def __init__(self, store: SessionStore) -> None:
        self.store = store
        self.state: SessionState = SignedOut()
        self._lock = asyncio.Lock()

    async def load(self) -> SessionState:
        """Restore state from the store at startup. Storage errors read as signed out."""
        try:
            token = await self.store.get_session_token()
            provider = await self.store.get_oauth_provider()
        except StorageUnavailable:
            logger.warning("Session store unavailable at startup; starting signed out")
            token = provider = None
        # A token without a provider predates provider tracking; those were all Google
        self.state = SignedIn(token, provider or OAuthProvider.GOOGLE) if token else SignedOut()
        return self.state

    async def transition(self, state: SessionState) -> None:
        """Persist ``state`` and make it current. Raises StorageUnavailable if persisting fails."""
        async with self._lock:
            if isinstance(state, SignedIn):
                await self.store.set(SESSION_TOKEN_KEY, state.token)
                await self.store.set(OAUTH_PROVIDER_KEY, state.provider.value)
            else:
                await self.store.clear(SESSION_TOKEN_KEY)
                await self.store.clear(OAUTH_PROVIDER_KEY)
            self.state = state


class SignInStatus(str, Enum):
    SIGNED_IN = "signed_in"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class SignInResult:
    status: SignInStatus
    provider: OAuthProvider
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is SignInStatus.SIGNED_IN


class AuthGateway:
    """Facade over the session store and the OAuth handler.

    ``sign_in`` is single-flight per provider: the deep-link callback can't
    tell two handshakes apart, so a second caller joins the first one's
    result instead of starting another.
    """

    def __init__(
        self,
        context: SessionContext,
        oauth_handler: OAuthFlowHandler,
        auth_api: AuthApiClient | None = None,
    ) -> None:
        self.context = context
        self.oauth_handler = oauth_handler
        self.auth_api = auth_api
        self._in_flight: dict[OAuthProvider, asyncio.Task[SignInResult]] = {}
        self._waiters: dict[asyncio.Task[SignInResult], int] = {}
        self._listeners: list[SessionListener] = []

    @property
    def state(self) -> SessionState:
        return self.context.state

    def subscribe(self, listener: SessionListener) -> None:
        """Call ``listener`` with the new state after every transition."""
        self._listeners.append(listener)

    async def _read(self, key_reader: Callable[[], Awaitable[str | None]]) -> str | None:
        try:
            return await key_reader()
        except StorageUnavailable:
            logger.warning("Session store unavailable; treating as signed out")
            return None

    async def get_session_token(self) -> str | None:
        return await self._read(self.context.store.get_session_token)

    async def is_signed_in(self) -> bool:
        return await self.get_session_token() is not None

    async def has_app_access(self) -> bool:
        """Whether the splash screen may route straight to the app.

        Broader than ``is_signed_in``: a stored legacy Gemini API key also
        unlocks the app (local generation only, no sync).
        """
        if await self.is_signed_in():
            return True
        return await self.get_gemini_api_key() is not None

    async def get_gemini_api_key(self) -> str | None:
        return await self._read(self.context.store.get_gemini_api_key)

    async def current_user(self) -> UserResponse | None:
        """Ask the auth service who the stored token belongs to.

        A rejected token expires the session. None when signed out or the
        service can't be reached; the local session is kept in that case.
        """
        token = await self.get_session_token()
        if token is None or self.auth_api is None:
            return None
        try:
            me = await self.auth_api.get_me(token)
        except Unauthorized:
            await self.expire_session()
            return None
        except AuthServiceUnreachable as e:
            logger.warning("Could not look up the signed-in user: %s", e)
            return None
        return me.user

    async def sign_in(self, provider: OAuthProvider) -> SignInResult:
        task = self._in_flight.get(provider)
        if task is None or task.cancelling():
            task = asyncio.create_task(self._run_sign_in(provider), name=f"sign-in-{provider.value}")
            self._in_flight[provider] = task
            task.add_done_callback(lambda done: self._release(provider, done))
        else:
            logger.info("%s sign-in already in progress; joining it", provider.display_name)

        # Shielded so one caller going away leaves the handshake running for the others
        self._waiters[task] = self._waiters.get(task, 0) + 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and current is not None and not current.cancelling():
                logger.info("%s sign-in was cancelled", provider.display_name)
                return SignInResult(SignInStatus.CANCELLED, provider, f"{provider.display_name} sign-in was cancelled.")
            raise
        finally:
            self._waiters[task] -= 1
            if not self._waiters[task]:
                del self._waiters[task]
                if not task.done():
                    task.cancel()

    def cancel_sign_in(self, provider: OAuthProvider) -> bool:
        """Abort an in-flight handshake, e.g. when the hosting screen goes away.

        Every caller still waiting on it gets a CANCELLED result.
        """
        task = self._in_flight.get(provider)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def _release(self, provider: OAuthProvider, task: asyncio.Task[SignInResult]) -> None:
        if self._in_flight.get(provider) is task:
            del self._in_flight[provider]

    async def _run_sign_in(self, provider: OAuthProvider) -> SignInResult:
        try:
            response = await self.oauth_handler.start_oauth_flow(provider)
        except AuthServiceUnreachable as e:
            logger.warning("%s sign-in failed: %s", provider.display_name, e)
            return SignInResult(SignInStatus.FAILED, provider, str(e))
        if response is None:
            message = f"{provider.display_name} sign-in failed. Please try again."
            return SignInResult(SignInStatus.CANCELLED, provider, message)
        return await self._complete(response)

    async def _complete(self, response: AuthResponse) -> SignInResult:
        try:
            await self._transition(SignedIn(response.session_token, response.provider))
        except StorageUnavailable as e:
            logger.error("Could not persist %s session: %s", response.provider.display_name, e)
            return SignInResult(SignInStatus.FAILED, response.provider, "Could not save your session.")
        logger.info("Signed in with %s", response.provider.display_name)
        return SignInResult(SignInStatus.SIGNED_IN, response.provider)

    async def complete_redirect(self, landing_url: str) -> SignInResult | None:
        """Finish a full-page redirect sign-in from the URL the page reloaded with.

        Returns None when the URL isn't an auth redirect at all.
        """
        payload = parse_callback_url(landing_url)
        if not payload.is_auth_redirect:
            return None
        provider = payload.provider or OAuthProvider.GOOGLE
        if payload.error or not payload.token:
            logger.warning("%s redirect sign-in failed: %s", provider.display_name, payload.error or "no token")
            return SignInResult(SignInStatus.FAILED, provider, payload.error or "Sign-in did not complete.")
        return await self._complete(AuthResponse(payload.token, provider))

    async def sign_out(self) -> None:
        """Clear the session. Idempotent; the server-side logout is best-effort."""
        token = await self.get_session_token()
        if token and self.auth_api is not None:
            try:
                await self.auth_api.logout(token)
            except FlashcardsError as e:
                logger.warning("Remote logout failed, clearing local session anyway: %s", e)
        await self._sign_out_locally(SignedOut())

    async def expire_session(self) -> str:
        """Handle a rejected token: sign out locally and return the message for the UI."""
        logger.warning("Session token rejected by server; signing out")
        await self._sign_out_locally(SignedOut(expired=True))
        return Unauthorized.user_message

    async def _sign_out_locally(self, state: SignedOut) -> None:
        try:
            await self._transition(state)
        except StorageUnavailable as e:
            # The in-memory state still flips so this process stops using the token
            logger.error("Could not clear stored session: %s", e)
            self.context.state = state
            await self._notify(state)

    async def _transition(self, state: SessionState) -> None:
        await self.context.transition(state)
        # Listeners may trigger further transitions, so they run outside the context lock
        await self._notify(state)

    async def _notify(self, state: SessionState) -> None:
        for listener in list(self._listeners):
            try:
                await listener(state)
            except FlashcardsError:
                logger.exception("Session listener failed for %s", type(state).__name__)
