"""Domain values shared by the stores, the OAuth flow and the sync repository."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum

from backend.config import now_millis


class OAuthProvider(str, Enum):
    GOOGLE = "GOOGLE"
    APPLE = "APPLE"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class OAuthPlatform(str, Enum):
    """Client platform, which decides where the auth service redirects back to."""

    ANDROID = "ANDROID"
    IOS = "IOS"
    WEB = "WEB"


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Flashcard:
    """A single card. Immutable; edits replace the owning set wholesale."""

    front: str
    back: str
    set_id: str
    id: str = field(default_factory=_new_id)
    created_at: int = field(default_factory=now_millis)


@dataclass(frozen=True)
class FlashcardSet:
    """An ordered, immutable group of flashcards on one topic."""

    topic: str
    flashcards: tuple[Flashcard, ...] = ()
    id: str = field(default_factory=_new_id)
    created_at: int = field(default_factory=now_millis)

    def __post_init__(self) -> None:
        # Accept any sequence but always hold a tuple so equality and hashing work
        if not isinstance(self.flashcards, tuple):
            object.__setattr__(self, "flashcards", tuple(self.flashcards))

    @property
    def card_count(self) -> int:
        return len(self.flashcards)

    @classmethod
    def create(cls, topic: str, cards: list[tuple[str, str]]) -> FlashcardSet:
        """Build a new set whose cards already point at the new set's id."""
        set_id = _new_id()
        created_at = now_millis()
        flashcards = tuple(
            Flashcard(front=front, back=back, set_id=set_id, created_at=created_at) for front, back in cards
        )
        return cls(topic=topic, flashcards=flashcards, id=set_id, created_at=created_at)


@dataclass(frozen=True)
class FlashcardSetWithMeta:
    """A set tagged with its provenance relative to the remote store."""

    flashcard_set: FlashcardSet
    is_local_only: bool


@dataclass(frozen=True)
class AuthResponse:
    session_token: str
    provider: OAuthProvider


@dataclass(frozen=True)
class SignedOut:
    expired: bool = False


@dataclass(frozen=True)
class SignedIn:
    token: str
    provider: OAuthProvider


SessionState = SignedOut | SignedIn
