"""Durable key-value storage for the session token, provider and preferences.

One contract, two backends: an in-memory store for tests and ephemeral
runs, and a SQLite-backed store for the real device. Values are strings;
the typed helpers on the base class handle conversion.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.errors import StorageUnavailable
from backend.models.config_entry import ConfigEntry
from client.locks import KeyedLock
from client.models import OAuthProvider

logger = logging.getLogger(__name__)

SESSION_TOKEN_KEY = "session_token"
OAUTH_PROVIDER_KEY = "oauth_provider"
GEMINI_API_KEY_KEY = "gemini_api_key"
DARK_MODE_KEY = "dark_mode"


class SessionStore(ABC):
    """Async key-value store with read-after-write consistency per key."""

    def __init__(self) -> None:
        self._write_locks = KeyedLock()

    @abstractmethod
    async def _read(self, key: str) -> str | None: ...

    @abstractmethod
    async def _write(self, key: str, value: str | None) -> None: ...

    async def get(self, key: str) -> str | None:
        # Waiting on the key's lock means a read never sees a half-committed write
        async with self._write_locks(key):
            return await self._read(key)

    async def set(self, key: str, value: str) -> None:
        async with self._write_locks(key):
            await self._write(key, value)

    async def clear(self, key: str) -> None:
        async with self._write_locks(key):
            await self._write(key, None)

    async def get_session_token(self) -> str | None:
        return await self.get(SESSION_TOKEN_KEY)

    async def get_oauth_provider(self) -> OAuthProvider | None:
        name = await self.get(OAUTH_PROVIDER_KEY)
        if name is None:
            return None
        try:
            return OAuthProvider(name)
        except ValueError:
            logger.warning("Ignoring unknown stored OAuth provider %r", name)
            return None

    async def get_gemini_api_key(self) -> str | None:
        return await self.get(GEMINI_API_KEY_KEY)

    async def set_gemini_api_key(self, api_key: str) -> None:
        await self.set(GEMINI_API_KEY_KEY, api_key)

    async def is_dark_mode(self) -> bool:
        return await self.get(DARK_MODE_KEY) == "true"

    async def set_dark_mode(self, is_dark: bool) -> None:
        await self.set(DARK_MODE_KEY, "true" if is_dark else "false")


class InMemorySessionStore(SessionStore):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        super().__init__()
        self._values: dict[str, str] = dict(initial or {})

    async def _read(self, key: str) -> str | None:
        return self._values.get(key)

    async def _write(self, key: str, value: str | None) -> None:
        if value is None:
            self._values.pop(key, None)
        else:
            self._values[key] = value


class SqlSessionStore(SessionStore):
    """Session store persisted in the ``config_entries`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        super().__init__()
        self._session_factory = session_factory

    async def _read(self, key: str) -> str | None:
        try:
            async with self._session_factory() as db:
                entry = await db.get(ConfigEntry, key)
                return entry.value if entry else None
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Failed to read {key!r}") from e

    async def _write(self, key: str, value: str | None) -> None:
        try:
            async with self._session_factory() as db:
                entry = await db.get(ConfigEntry, key)
                if value is None:
                    if entry is not None:
                        await db.delete(entry)
                elif entry is None:
                    db.add(ConfigEntry(key=key, value=value))
                else:
                    entry.value = value
                await db.commit()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Failed to write {key!r}") from e
