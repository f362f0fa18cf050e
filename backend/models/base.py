"""Declarative base and shared column mixins."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from backend.config import utcnow


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """Row bookkeeping columns, distinct from the domain ``created_at`` millis."""

    stored_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
