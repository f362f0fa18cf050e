"""OAuth handshake driver.

The handshake is the same everywhere: ask the auth service for an
authorization URL, show it to the user, read the session token out of
the callback URL. Only the "show it to the user" step differs by
platform, so it is injected as a presenter:

- DeepLinkPresenter: custom tab / external browser. Completion arrives
  later as an ``<app-scheme>://callback`` deep link handed to the
  CallbackRegistry.
- AuthSessionPresenter: an embedded secure browser session that returns
  the callback URL itself.
- RedirectPresenter: full-page navigation. On success the page unloads,
  so returning at all means the redirect didn't happen.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import parse_qs, urlsplit

from backend.config import settings
from backend.errors import AuthCancelled
from client.models import AuthResponse, OAuthPlatform, OAuthProvider
from client.remote import AuthApiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallbackPayload:
    """What an OAuth callback URL carried."""

    token: str | None
    error: str | None = None
    provider: OAuthProvider | None = None
    is_auth_redirect: bool = False


def parse_callback_url(url: str) -> CallbackPayload:
    """Pull the session token, error and provider out of a callback URL.

    Expected shape: ``<scheme>://callback?auth-redirect=true&token=XXXXX``.
    """
    query = parse_qs(urlsplit(url).query)

    def first(name: str) -> str | None:
        values = query.get(name)
        return values[0] if values and values[0] else None

    provider = None
    provider_name = first("provider")
    if provider_name:
        try:
            provider = OAuthProvider(provider_name.upper())
        except ValueError:
            logger.warning("Callback named unknown provider %r", provider_name)

    return CallbackPayload(
        token=first("token"),
        error=first("error"),
        provider=provider,
        is_auth_redirect=first("auth-redirect") == "true",
    )


def is_app_callback(url: str, app_scheme: str) -> bool:
    parts = urlsplit(url)
    return parts.scheme == app_scheme and parts.netloc == "callback"


class CallbackRegistry:
    """One-shot continuation for the deep-link callback.

    The callback carries no correlation id, so only the most recent
    pending handshake can be resumed. Beginning a new one cancels the old.
    """

    def __init__(self, app_scheme: str | None = None) -> None:
        self.app_scheme = app_scheme or settings.app_scheme
        self._pending: asyncio.Future[str] | None = None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def begin(self) -> asyncio.Future[str]:
        if self.has_pending:
            logger.warning("Superseding a pending OAuth callback")
            self._pending.cancel()
        self._pending = asyncio.get_running_loop().create_future()
        return self._pending

    def deliver(self, url: str) -> bool:
        """Resume the pending handshake with ``url``. Returns False if nothing was waiting."""
        if not is_app_callback(url, self.app_scheme):
            logger.debug("Ignoring non-callback deep link %s", url)
            return False
        if not self.has_pending:
            logger.info("OAuth callback arrived with no pending handshake; ignoring")
            return False
        self._pending.set_result(url)
        self._pending = None
        return True

    def cancel(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    def release(self, future: asyncio.Future[str]) -> None:
        """Drop ``future`` if it is still the pending one."""
        if self._pending is future:
            self.cancel()


class Presenter(Protocol):
    async def present(self, auth_url: str) -> str | None:
        """Show ``auth_url`` and return the callback URL, or None if the user didn't finish."""
        ...


async def _maybe_await(result: object) -> None:
    if inspect.isawaitable(result):
        await result


class DeepLinkPresenter:
    """Custom tab / system browser, completed by a deep link into the app."""

    def __init__(self, launch: Callable[[str], object], callbacks: CallbackRegistry) -> None:
        self.launch = launch
        self.callbacks = callbacks

    async def present(self, auth_url: str) -> str | None:
        future = self.callbacks.begin()
        try:
            try:
                await _maybe_await(self.launch(auth_url))
            except AuthCancelled:
                logger.info("OAuth browser launch was dismissed")
                return None
            except Exception as e:
                logger.warning("Failed to launch browser for OAuth: %s", e)
                return None
            try:
                return await future
            except asyncio.CancelledError:
                # Superseded by a newer handshake rather than cancelled by our caller
                if future.cancelled() and not _current_task_cancelling():
                    return None
                raise
        finally:
            self.callbacks.release(future)


def _current_task_cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


class AuthSessionPresenter:
    """Embedded secure browser session that reports the callback URL directly.

    ``start_session(auth_url, callback_scheme)`` returns the callback URL.
    It may return None or raise AuthCancelled when the user closes the sheet.
    """

    def __init__(
        self,
        start_session: Callable[[str, str], Awaitable[str | None]],
        callback_scheme: str | None = None,
    ) -> None:
        self.start_session = start_session
        self.callback_scheme = callback_scheme or settings.app_scheme

    async def present(self, auth_url: str) -> str | None:
        try:
            return await self.start_session(auth_url, self.callback_scheme)
        except AuthCancelled:
            logger.info("OAuth browser session closed by the user")
            return None
        except Exception as e:
            logger.warning("OAuth browser session failed: %s", e)
            return None


class RedirectPresenter:
    """Full-page redirect. Success unloads the page, so any return is a failure."""

    def __init__(self, navigate: Callable[[str], object], wait_seconds: float | None = None) -> None:
        self.navigate = navigate
        self.wait_seconds = settings.redirect_wait_seconds if wait_seconds is None else wait_seconds

    async def present(self, auth_url: str) -> str | None:
        await _maybe_await(self.navigate(auth_url))
        await asyncio.sleep(self.wait_seconds)
        logger.warning("Expected navigation to %s did not happen", auth_url)
        return None


class OAuthFlowHandler:
    """Drives one provider handshake through the injected presenter.

    Returns an AuthResponse or None. Only AuthServiceUnreachable escapes:
    user cancellation, presenter failures, callback errors and timeouts all
    come back as None.
    """

    def __init__(
        self,
        auth_api: AuthApiClient,
        presenter: Presenter,
        platform: OAuthPlatform,
        timeout_seconds: float | None = None,
    ) -> None:
        self.auth_api = auth_api
        self.presenter = presenter
        self.platform = platform
        self.timeout_seconds = settings.oauth_timeout_seconds if timeout_seconds is None else timeout_seconds

    async def start_oauth_flow(self, provider: OAuthProvider) -> AuthResponse | None:
        login = await self.auth_api.start_login(provider, self.platform)

        try:
            callback_url = await asyncio.wait_for(self.presenter.present(login.auth_url), self.timeout_seconds)
        except TimeoutError:
            logger.warning("%s sign-in timed out after %.0fs", provider.display_name, self.timeout_seconds)
            return None

        if callback_url is None:
            logger.info("%s sign-in was cancelled", provider.display_name)
            return None

        payload = parse_callback_url(callback_url)
        if payload.error or not payload.token:
            logger.warning("%s sign-in failed: %s", provider.display_name, payload.error or "no token in callback")
            return None
        return AuthResponse(session_token=payload.token, provider=provider)


def create_presenter(
    platform: OAuthPlatform,
    *,
    launch: Callable[[str], object] | None = None,
    callbacks: CallbackRegistry | None = None,
    start_session: Callable[[str, str], Awaitable[str | None]] | None = None,
    navigate: Callable[[str], object] | None = None,
) -> Presenter:
    """Pick the presenter for a platform from the capabilities the host provides."""
    if platform is OAuthPlatform.ANDROID:
        if launch is None or callbacks is None:
            raise ValueError("ANDROID needs a browser launcher and a callback registry")
        return DeepLinkPresenter(launch, callbacks)
    if platform is OAuthPlatform.IOS:
        if start_session is None:
            raise ValueError("IOS needs a browser session starter")
        return AuthSessionPresenter(start_session)
    if navigate is None:
        raise ValueError("WEB needs a page navigator")
    return RedirectPresenter(navigate)
