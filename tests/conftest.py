"""Shared fakes and fixtures for the client tests."""

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.api.schemas import MeResponse, UserResponse
from backend.models import Base
from client.auth_gateway import AuthGateway, SessionContext
from client.flashcard_store import InMemoryFlashcardStore
from client.models import AuthResponse, Flashcard, FlashcardSet, OAuthProvider
from client.session_store import InMemorySessionStore
from client.sync_repository import FlashcardSyncRepository


class FakeOAuthHandler:
    """Stands in for OAuthFlowHandler; optionally blocks until ``release`` is set."""

    def __init__(self, response: AuthResponse | None = None) -> None:
        self.response = response
        self.error: Exception | None = None
        self.calls: list[OAuthProvider] = []
        self.release: asyncio.Event | None = None

    async def start_oauth_flow(self, provider: OAuthProvider) -> AuthResponse | None:
        self.calls.append(provider)
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.response


class FakeAuthApi:
    def __init__(self) -> None:
        self.logged_out: list[str] = []
        self.error: Exception | None = None
        self.me_error: Exception | None = None

    async def get_me(self, token: str) -> MeResponse:
        if self.me_error is not None:
            raise self.me_error
        return MeResponse(user=UserResponse(user_id="u-1", auth_id=f"google:{token}", created_at=0))

    async def logout(self, token: str) -> None:
        if self.error is not None:
            raise self.error
        self.logged_out.append(token)


class FakeRemote:
    """In-memory RemoteFlashcardClient. Set ``error`` to make every call fail."""

    def __init__(self) -> None:
        self.sets: dict[str, FlashcardSet] = {}
        self.error: Exception | None = None
        self.pushed: list[str] = []
        self.deleted: list[str] = []
        self.generated: FlashcardSet | None = None
        self.api_keys: list[str | None] = []

    def _maybe_fail(self) -> None:
        if self.error is not None:
            raise self.error

    async def list_sets(self, token: str) -> list[FlashcardSet]:
        self._maybe_fail()
        return list(self.sets.values())

    async def get_set(self, token: str, set_id: str) -> FlashcardSet | None:
        self._maybe_fail()
        return self.sets.get(set_id)

    async def create_set(self, token: str, flashcard_set: FlashcardSet) -> FlashcardSet:
        self._maybe_fail()
        self.sets[flashcard_set.id] = flashcard_set
        self.pushed.append(flashcard_set.id)
        return flashcard_set

    async def delete_set(self, token: str, set_id: str) -> bool:
        self._maybe_fail()
        self.deleted.append(set_id)
        return self.sets.pop(set_id, None) is not None

    async def get_randomized(self, token: str, set_id: str) -> list[Flashcard] | None:
        self._maybe_fail()
        flashcard_set = self.sets.get(set_id)
        return None if flashcard_set is None else list(reversed(flashcard_set.flashcards))

    async def generate(
        self, token: str, topic: str, count: int, user_query: str, api_key: str | None = None
    ) -> FlashcardSet:
        self._maybe_fail()
        self.api_keys.append(api_key)
        return self.generated or FlashcardSet.create(topic, [("q", "a")] * count)


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def flashcard_store() -> InMemoryFlashcardStore:
    return InMemoryFlashcardStore()


@pytest.fixture
def oauth_handler() -> FakeOAuthHandler:
    return FakeOAuthHandler(AuthResponse("token-abc", OAuthProvider.GOOGLE))


@pytest.fixture
def auth_api() -> FakeAuthApi:
    return FakeAuthApi()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def gateway(session_store: InMemorySessionStore, oauth_handler: FakeOAuthHandler, auth_api: FakeAuthApi) -> AuthGateway:
    return AuthGateway(SessionContext(session_store), oauth_handler, auth_api=auth_api)  # type: ignore[arg-type]


@pytest.fixture
def repository(
    gateway: AuthGateway,
    remote: FakeRemote,
    flashcard_store: InMemoryFlashcardStore,
) -> FlashcardSyncRepository:
    repo = FlashcardSyncRepository(gateway, remote, flashcard_store)  # type: ignore[arg-type]
    gateway.subscribe(repo.handle_session_change)
    return repo


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> async_sessionmaker[AsyncSession]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'device.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
