"""On-device flashcard tables."""

from sqlalchemy import BigInteger, Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin


class FlashcardSetRecord(Base, TimestampMixin):
    """A stored flashcard set and whether the remote store has acknowledged it."""

    __tablename__ = "flashcard_sets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    topic: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)  # epoch millis
    is_local_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    flashcards: Mapped[list["FlashcardRecord"]] = relationship(
        back_populates="flashcard_set",
        cascade="all, delete-orphan",
        order_by="FlashcardRecord.position",
    )


class FlashcardRecord(Base):
    __tablename__ = "flashcards"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    set_id: Mapped[str] = mapped_column(ForeignKey("flashcard_sets.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    front: Mapped[str] = mapped_column(Text, nullable=False)
    back: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    flashcard_set: Mapped[FlashcardSetRecord] = relationship(back_populates="flashcards")
