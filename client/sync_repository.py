"""Unified, provenance-tagged view of flashcard sets.

Local storage is always the source of durability: every write lands in
the FlashcardStore first and remote sync is best-effort on top. A set is
local-only until the remote store has acknowledged its id; failed pushes
are retried on the next reconciliation.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from backend.errors import NetworkUnavailable, Unauthorized
from client.auth_gateway import AuthGateway
from client.flashcard_store import FlashcardStore, check_card_ownership
from client.locks import KeyedLock
from client.models import Flashcard, FlashcardSet, FlashcardSetWithMeta, SessionState, SignedIn
from client.remote import RemoteFlashcardClient

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass."""

    skipped: bool = False  # no session
    failed: bool = False  # remote unreachable or session expired
    session_expired: bool = False
    pulled: list[str] = field(default_factory=list)  # remote sets written locally
    pushed: list[str] = field(default_factory=list)  # local sets acknowledged by remote
    rejected: list[str] = field(default_factory=list)  # remote sets with cards from another set
    local_only: list[str] = field(default_factory=list)  # still unacknowledged afterwards
    message: str | None = None


def sort_newest_first(sets: list[FlashcardSetWithMeta]) -> list[FlashcardSetWithMeta]:
    """Descending ``created_at``, ties broken by ascending id."""
    return sorted(sets, key=lambda meta: (-meta.flashcard_set.created_at, meta.flashcard_set.id))


def _owns_its_cards(remote_set: FlashcardSet) -> bool:
    try:
        check_card_ownership(remote_set)
    except ValueError as e:
        logger.warning("Ignoring remote set %s: %s", remote_set.id, e)
        return False
    return True


class FlashcardSyncRepository:
    def __init__(
        self,
        auth: AuthGateway,
        remote: RemoteFlashcardClient,
        store: FlashcardStore,
        rng: random.Random | None = None,
    ) -> None:
        self.auth = auth
        self.remote = remote
        self.store = store
        self.rng = rng or random.Random()
        self._set_locks = KeyedLock()

    async def get_all_flashcard_sets(self) -> list[FlashcardSetWithMeta]:
        return sort_newest_first(await self.store.get_all_with_meta())

    async def get_flashcard_set(self, set_id: str) -> FlashcardSet | None:
        """Local first; falls back to the remote store when signed in."""
        local = await self.store.get_by_id(set_id)
        if local is not None:
            return local

        token = await self.auth.get_session_token()
        if token is None:
            return None
        async with self._set_locks(set_id):
            try:
                remote_set = await self.remote.get_set(token, set_id)
            except Unauthorized:
                await self.auth.expire_session()
                return None
            except NetworkUnavailable as e:
                logger.warning("Remote lookup of set %s failed: %s", set_id, e)
                return None
            if remote_set is None or not _owns_its_cards(remote_set):
                return None
            await self.store.save(remote_set, local_only=False)
            return remote_set

    async def save_flashcard_set(self, flashcard_set: FlashcardSet) -> FlashcardSetWithMeta:
        """Store locally, then try to push. Never raises for remote failures."""
        async with self._set_locks(flashcard_set.id):
            await self.store.save(flashcard_set)
            token = await self.auth.get_session_token()
            if token is not None:
                try:
                    await self._push(token, flashcard_set)
                except Unauthorized:
                    await self.auth.expire_session()
            meta = await self.store.get_meta(flashcard_set.id)
        return meta or FlashcardSetWithMeta(flashcard_set, is_local_only=True)

    async def delete_flashcard_set(self, set_id: str) -> None:
        async with self._set_locks(set_id):
            meta = await self.store.get_meta(set_id)
            await self.store.delete(set_id)
            if meta is None or meta.is_local_only:
                return
            token = await self.auth.get_session_token()
            if token is None:
                return
            try:
                await self.remote.delete_set(token, set_id)
            except Unauthorized:
                await self.auth.expire_session()
            except NetworkUnavailable as e:
                logger.warning("Remote delete of set %s failed; deleted locally only: %s", set_id, e)

    async def get_randomized_flashcards(self, set_id: str) -> list[Flashcard] | None:
        """The set's cards in a fresh uniformly random order.

        A set that exists only remotely is shuffled by the server and not cached.
        """
        flashcard_set = await self.store.get_by_id(set_id)
        if flashcard_set is not None:
            return self.rng.sample(flashcard_set.flashcards, k=flashcard_set.card_count)

        token = await self.auth.get_session_token()
        if token is None:
            return None
        try:
            return await self.remote.get_randomized(token, set_id)
        except Unauthorized:
            await self.auth.expire_session()
            return None
        except NetworkUnavailable as e:
            logger.warning("Remote shuffle of set %s failed: %s", set_id, e)
            return None

    async def generate(self, topic: str, count: int, user_query: str) -> FlashcardSet | None:
        """Generate a set server-side. Not saved; the caller decides whether to keep it.

        Returns None when signed out or unreachable. RateLimited propagates so
        the UI can tell the user when to try again.
        """
        token = await self.auth.get_session_token()
        if token is None:
            logger.info("Server generation requires a session")
            return None
        try:
            api_key = await self.auth.get_gemini_api_key()
            return await self.remote.generate(token, topic, count, user_query, api_key=api_key)
        except Unauthorized:
            await self.auth.expire_session()
            return None
        except NetworkUnavailable as e:
            logger.warning("Generation failed: %s", e)
            return None

    async def _push(self, token: str, flashcard_set: FlashcardSet) -> bool:
        """Push one set and mark it synced on acknowledgement. Caller holds the set's lock.

        Unauthorized propagates; network failures leave the set local-only.
        """
        try:
            await self.remote.create_set(token, flashcard_set)
        except NetworkUnavailable as e:
            logger.warning("Push of set %s failed; keeping it local-only: %s", flashcard_set.id, e)
            return False
        await self.store.mark_synced(flashcard_set.id)
        return True

    async def reconcile(self) -> ReconcileReport:
        """Merge remote sets into local storage and push local-only sets upstream.

        Same id with different content: remote wins only if its
        ``created_at`` is newer, otherwise the local copy is pushed over it.
        """
        token = await self.auth.get_session_token()
        if token is None:
            return ReconcileReport(skipped=True, local_only=await self._local_only_ids())

        report = ReconcileReport()
        try:
            remote_sets = await self.remote.list_sets(token)
            remote_ids = {s.id for s in remote_sets}

            for remote_set in remote_sets:
                async with self._set_locks(remote_set.id):
                    await self._merge_remote(token, remote_set, report)

            for meta in await self.store.get_all_with_meta():
                set_id = meta.flashcard_set.id
                if not meta.is_local_only or set_id in remote_ids:
                    continue
                async with self._set_locks(set_id):
                    # Re-read under the lock; a concurrent save may have replaced it
                    current = await self.store.get_meta(set_id)
                    if current is not None and current.is_local_only:
                        if await self._push(token, current.flashcard_set):
                            report.pushed.append(set_id)
        except Unauthorized:
            report.failed = True
            report.session_expired = True
            report.message = await self.auth.expire_session()
        except NetworkUnavailable as e:
            logger.warning("Reconciliation aborted: %s", e)
            report.failed = True
            report.message = str(e)

        report.local_only = await self._local_only_ids()
        logger.info(
            "Reconciled: %d pulled, %d pushed, %d still local-only",
            len(report.pulled),
            len(report.pushed),
            len(report.local_only),
        )
        return report

    async def _merge_remote(self, token: str, remote_set: FlashcardSet, report: ReconcileReport) -> None:
        if not _owns_its_cards(remote_set):
            report.rejected.append(remote_set.id)
            return
        local = await self.store.get_meta(remote_set.id)
        if local is None or remote_set.created_at > local.flashcard_set.created_at:
            await self.store.save(remote_set, local_only=False)
            # An existing row keeps its flag on save, so acknowledge explicitly
            await self.store.mark_synced(remote_set.id)
            report.pulled.append(remote_set.id)
        elif local.flashcard_set == remote_set:
            await self.store.mark_synced(remote_set.id)
        elif await self._push(token, local.flashcard_set):
            report.pushed.append(remote_set.id)

    async def _local_only_ids(self) -> list[str]:
        return sorted(m.flashcard_set.id for m in await self.store.get_all_with_meta() if m.is_local_only)

    async def handle_session_change(self, state: SessionState) -> None:
        """Session listener: reconcile on sign-in, drop acknowledgements on sign-out."""
        if isinstance(state, SignedIn):
            await self.reconcile()
        else:
            # No remote store backs these sets any more; a later sign-in pushes them again
            await self.store.mark_all_local_only()
