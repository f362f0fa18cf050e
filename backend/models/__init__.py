"""SQLAlchemy ORM models for on-device flashcard and session storage."""

from backend.models.base import Base
from backend.models.config_entry import ConfigEntry
from backend.models.flashcard import FlashcardRecord, FlashcardSetRecord

__all__ = ["Base", "ConfigEntry", "FlashcardRecord", "FlashcardSetRecord"]
