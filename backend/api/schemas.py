"""Pydantic schemas for the remote auth and flashcard REST contract.

Field names follow the wire format (camelCase) through aliases so Python
code keeps snake_case attributes.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from client.models import Flashcard, FlashcardSet


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Flashcards ---


class FlashcardSchema(WireModel):
    id: str
    front: str
    back: str
    created_at: int
    set_id: str

    def to_domain(self) -> Flashcard:
        return Flashcard(id=self.id, front=self.front, back=self.back, created_at=self.created_at, set_id=self.set_id)

    @classmethod
    def from_domain(cls, card: Flashcard) -> "FlashcardSchema":
        return cls(id=card.id, front=card.front, back=card.back, created_at=card.created_at, set_id=card.set_id)


class FlashcardSetSchema(WireModel):
    id: str
    topic: str
    flashcards: list[FlashcardSchema] = Field(default_factory=list)
    created_at: int

    def to_domain(self) -> FlashcardSet:
        return FlashcardSet(
            id=self.id,
            topic=self.topic,
            flashcards=tuple(card.to_domain() for card in self.flashcards),
            created_at=self.created_at,
        )

    @classmethod
    def from_domain(cls, flashcard_set: FlashcardSet) -> "FlashcardSetSchema":
        return cls(
            id=flashcard_set.id,
            topic=flashcard_set.topic,
            flashcards=[FlashcardSchema.from_domain(card) for card in flashcard_set.flashcards],
            created_at=flashcard_set.created_at,
        )


# --- Auth ---


class LoginUrlResponse(WireModel):
    """Authorization URL the client must present to the user."""

    auth_url: str


class UserResponse(WireModel):
    user_id: str
    auth_id: str
    created_at: int


class MeResponse(WireModel):
    user: UserResponse


# --- Generation ---


class GenerateRequest(WireModel):
    topic: str
    count: int
    user_query: str
    api_key: str | None = None  # Legacy: client-supplied Gemini key


class GenerateResponse(WireModel):
    flashcard_set: FlashcardSetSchema | None = None
    error: str | None = None


class RateLimitError(WireModel):
    message: str
    try_again_at: int  # epoch millis
    number_of_generations: int
