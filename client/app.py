"""Application wiring for the flashcard client.

``build_client`` assembles the stores, the OAuth handler, the auth gateway
and the sync repository around one SessionContext. ``start`` restores the
persisted session; ``aclose`` releases the HTTP client. Use it as an async
context manager to tie both to the application's lifetime.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.config import settings
from backend.database import async_session
from client.auth_gateway import AuthGateway, SessionContext
from client.flashcard_store import FlashcardStore, SqlFlashcardStore
from client.models import OAuthPlatform, SessionState
from client.oauth import CallbackRegistry, OAuthFlowHandler, Presenter, create_presenter
from client.remote import AuthApiClient, RemoteFlashcardClient, create_http_client
from client.session_store import SessionStore, SqlSessionStore
from client.sync_repository import FlashcardSyncRepository

logger = logging.getLogger(__name__)


@dataclass
class FlashcardsClient:
    http: httpx.AsyncClient
    context: SessionContext
    callbacks: CallbackRegistry
    auth: AuthGateway
    repository: FlashcardSyncRepository

    async def start(self) -> SessionState:
        state = await self.context.load()
        logger.info("Client started (%s)", type(state).__name__)
        return state

    async def aclose(self) -> None:
        self.callbacks.cancel()
        await self.http.aclose()

    async def __aenter__(self) -> FlashcardsClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def handle_deep_link(self, url: str) -> bool:
        """Entry point for ``<app-scheme>://callback`` URLs delivered by the OS."""
        return self.callbacks.deliver(url)


def build_client(
    *,
    session_store: SessionStore | None = None,
    flashcard_store: FlashcardStore | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    http: httpx.AsyncClient | None = None,
    platform: OAuthPlatform | None = None,
    presenter: Presenter | None = None,
    launch: Callable[[str], object] | None = None,
    start_session: Callable[[str, str], Awaitable[str | None]] | None = None,
    navigate: Callable[[str], object] | None = None,
    rng: random.Random | None = None,
) -> FlashcardsClient:
    """Wire up a client. Storage defaults to the on-device SQLite database."""
    if session_store is None or flashcard_store is None:
        session_factory = session_factory or async_session
        session_store = session_store or SqlSessionStore(session_factory)
        flashcard_store = flashcard_store or SqlFlashcardStore(session_factory)

    http = http or create_http_client()
    platform = platform or OAuthPlatform(settings.oauth_platform.upper())
    callbacks = CallbackRegistry()
    if presenter is None:
        presenter = create_presenter(
            platform,
            launch=launch,
            callbacks=callbacks,
            start_session=start_session,
            navigate=navigate,
        )

    auth_api = AuthApiClient(http)
    context = SessionContext(session_store)
    auth = AuthGateway(context, OAuthFlowHandler(auth_api, presenter, platform), auth_api=auth_api)
    repository = FlashcardSyncRepository(auth, RemoteFlashcardClient(http), flashcard_store, rng=rng)
    auth.subscribe(repository.handle_session_change)

    return FlashcardsClient(http=http, context=context, callbacks=callbacks, auth=auth, repository=repository)
