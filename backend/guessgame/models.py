from __future__ import annotations

from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base
from .domain.timeutils import now_ms


class EntityType(str, Enum):
    GUESS = "GUESS"
    PRICE = "PRICE"


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    MODIFY = "MODIFY"


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str] = mapped_column(String, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=now_ms)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=now_ms)


class Guess(Base):
    __tablename__ = "guesses"

    guess_id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    instrument: Mapped[str] = mapped_column(String, nullable=False)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    start_price: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    start_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    end_price: Mapped[Decimal | None] = mapped_column(Numeric(24, 8), nullable=True)
    correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    score_change: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolved_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    resolution_source: Mapped[str | None] = mapped_column(String(20), nullable=True)
    retry_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        # At most one unresolved guess per user; the insert itself is the check.
        Index(
            "uq_guesses_one_active_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("resolved = 0"),
            postgresql_where=text("resolved = false"),
        ),
        Index("ix_guesses_user_start_time", "user_id", "start_time"),
    )


class PriceObservationRecord(Base):
    __tablename__ = "price_observations"

    observation_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instrument: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_price_observations_instrument_timestamp", "instrument", "timestamp"),
        Index("ix_price_observations_expires_at", "expires_at"),
    )


class ResolutionTaskRecord(Base):
    """Delay-queue storage: one row per in-flight resolution task."""

    __tablename__ = "resolution_tasks"

    message_id: Mapped[str] = mapped_column(String, primary_key=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    enqueued_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    available_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    receive_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    dead_lettered_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_resolution_tasks_ready", "dead_lettered_at", "available_at"),
    )


class ChangeRecord(Base):
    """Committed mutation captured for the change notifier."""

    __tablename__ = "change_records"

    change_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    event_name: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_key: Mapped[str] = mapped_column(String, nullable=False)
    new_image: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=now_ms)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_change_records_pending", "processed_at", "change_id"),)
