"""On-device storage of flashcard sets.

Stores know nothing about ordering or the remote service beyond a single
acknowledgement flag per set; the sync repository owns both concerns.
"""

from abc import ABC, abstractmethod

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from backend.errors import StorageUnavailable
from backend.models.flashcard import FlashcardRecord, FlashcardSetRecord
from client.models import Flashcard, FlashcardSet, FlashcardSetWithMeta


def check_card_ownership(flashcard_set: FlashcardSet) -> None:
    """Raise ValueError if any card claims to belong to a different set."""
    for card in flashcard_set.flashcards:
        if card.set_id != flashcard_set.id:
            raise ValueError(f"Flashcard {card.id} belongs to set {card.set_id}, not {flashcard_set.id}")


class FlashcardStore(ABC):
    """Durable upsert/get/delete of flashcard sets keyed by id."""

    @abstractmethod
    async def save(self, flashcard_set: FlashcardSet, local_only: bool = True) -> None:
        """Upsert a set.

        ``local_only`` only applies to ids the store has never seen; an
        existing row keeps its acknowledgement flag because replacing the
        content doesn't un-acknowledge the id.
        """

    @abstractmethod
    async def get_all_with_meta(self) -> list[FlashcardSetWithMeta]: ...

    @abstractmethod
    async def get_meta(self, set_id: str) -> FlashcardSetWithMeta | None: ...

    @abstractmethod
    async def delete(self, set_id: str) -> None: ...

    @abstractmethod
    async def mark_synced(self, set_id: str) -> None: ...

    @abstractmethod
    async def mark_all_local_only(self) -> None: ...

    async def get_all(self) -> list[FlashcardSet]:
        return [meta.flashcard_set for meta in await self.get_all_with_meta()]

    async def get_by_id(self, set_id: str) -> FlashcardSet | None:
        meta = await self.get_meta(set_id)
        return meta.flashcard_set if meta else None


class InMemoryFlashcardStore(FlashcardStore):
    def __init__(self) -> None:
        self._sets: dict[str, FlashcardSetWithMeta] = {}

    async def save(self, flashcard_set: FlashcardSet, local_only: bool = True) -> None:
        check_card_ownership(flashcard_set)
        existing = self._sets.get(flashcard_set.id)
        flag = existing.is_local_only if existing else local_only
        self._sets[flashcard_set.id] = FlashcardSetWithMeta(flashcard_set, is_local_only=flag)

    async def get_all_with_meta(self) -> list[FlashcardSetWithMeta]:
        return list(self._sets.values())

    async def get_meta(self, set_id: str) -> FlashcardSetWithMeta | None:
        return self._sets.get(set_id)

    async def delete(self, set_id: str) -> None:
        self._sets.pop(set_id, None)

    async def mark_synced(self, set_id: str) -> None:
        meta = self._sets.get(set_id)
        if meta is not None:
            self._sets[set_id] = FlashcardSetWithMeta(meta.flashcard_set, is_local_only=False)

    async def mark_all_local_only(self) -> None:
        for set_id, meta in self._sets.items():
            self._sets[set_id] = FlashcardSetWithMeta(meta.flashcard_set, is_local_only=True)


def _to_domain(record: FlashcardSetRecord) -> FlashcardSetWithMeta:
    flashcards = tuple(
        Flashcard(
            id=card.id,
            front=card.front,
            back=card.back,
            created_at=card.created_at,
            set_id=card.set_id,
        )
        for card in record.flashcards
    )
    flashcard_set = FlashcardSet(
        id=record.id,
        topic=record.topic,
        flashcards=flashcards,
        created_at=record.created_at,
    )
    return FlashcardSetWithMeta(flashcard_set, is_local_only=record.is_local_only)


def _to_record(flashcard_set: FlashcardSet, is_local_only: bool) -> FlashcardSetRecord:
    return FlashcardSetRecord(
        id=flashcard_set.id,
        topic=flashcard_set.topic,
        created_at=flashcard_set.created_at,
        is_local_only=is_local_only,
        flashcards=[
            FlashcardRecord(
                id=card.id,
                set_id=flashcard_set.id,
                position=position,
                front=card.front,
                back=card.back,
                created_at=card.created_at,
            )
            for position, card in enumerate(flashcard_set.flashcards)
        ],
    )


class SqlFlashcardStore(FlashcardStore):
    """Flashcard store backed by the ``flashcard_sets``/``flashcards`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _load(self, db: AsyncSession, set_id: str) -> FlashcardSetRecord | None:
        stmt = (
            select(FlashcardSetRecord)
            .where(FlashcardSetRecord.id == set_id)
            .options(selectinload(FlashcardSetRecord.flashcards))
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def save(self, flashcard_set: FlashcardSet, local_only: bool = True) -> None:
        check_card_ownership(flashcard_set)
        try:
            async with self._session_factory() as db:
                existing = await self._load(db, flashcard_set.id)
                flag = local_only
                if existing is not None:
                    flag = existing.is_local_only
                    # Full replacement: drop the old row and its cards before inserting
                    await db.delete(existing)
                    await db.flush()
                db.add(_to_record(flashcard_set, flag))
                await db.commit()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Failed to save flashcard set {flashcard_set.id}") from e

    async def get_all_with_meta(self) -> list[FlashcardSetWithMeta]:
        try:
            async with self._session_factory() as db:
                stmt = select(FlashcardSetRecord).options(selectinload(FlashcardSetRecord.flashcards))
                result = await db.execute(stmt)
                return [_to_domain(record) for record in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StorageUnavailable("Failed to load flashcard sets") from e

    async def get_meta(self, set_id: str) -> FlashcardSetWithMeta | None:
        try:
            async with self._session_factory() as db:
                record = await self._load(db, set_id)
                return _to_domain(record) if record else None
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Failed to load flashcard set {set_id}") from e

    async def delete(self, set_id: str) -> None:
        try:
            async with self._session_factory() as db:
                record = await self._load(db, set_id)
                if record is not None:
                    await db.delete(record)
                    await db.commit()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Failed to delete flashcard set {set_id}") from e

    async def _set_local_only(self, value: bool, set_id: str | None = None) -> None:
        stmt = update(FlashcardSetRecord).values(is_local_only=value)
        if set_id is not None:
            stmt = stmt.where(FlashcardSetRecord.id == set_id)
        try:
            async with self._session_factory() as db:
                await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            raise StorageUnavailable("Failed to update sync flags") from e

    async def mark_synced(self, set_id: str) -> None:
        await self._set_local_only(False, set_id)

    async def mark_all_local_only(self) -> None:
        await self._set_local_only(True)
