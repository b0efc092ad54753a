"""SQLAlchemy ORM models."""
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    case,
)
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GameSession(Base):
    """One play period, created on game start and closed on exit."""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(255), unique=True, nullable=False)
    user_id = Column(String(255), index=True, nullable=False)
    platform = Column(String(50), nullable=False)
    resolution = Column(String(50), nullable=False)
    device_model = Column(String(255), nullable=True)
    os_version = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    # End-of-session summary, only meaningful once ended_at is set
    session_duration = Column(Float, nullable=True)
    total_cards_processed = Column(Integer, nullable=True)
    total_categories_completed = Column(Integer, nullable=True)
    average_decision_time = Column(Float, nullable=True)
    success_rate = Column(Float, nullable=True)


class GameEvent(Base):
    """One interaction record, most commonly a card_swipe."""
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(255),
        ForeignKey("sessions.session_id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    event_type = Column(String(50), index=True, nullable=False)
    card_id = Column(String(255), nullable=True)
    category = Column(String(255), nullable=True)
    direction = Column(String(10), nullable=True)
    success = Column(Boolean, nullable=True)
    duration = Column(Float, nullable=True)
    start_x = Column(Float, nullable=True)
    start_y = Column(Float, nullable=True)
    end_x = Column(Float, nullable=True)
    end_y = Column(Float, nullable=True)
    max_rotation = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class PerformanceMetric(Base):
    """Periodic client health sample."""
    __tablename__ = "performance_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(255),
        ForeignKey("sessions.session_id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    fps = Column(Float, nullable=True)
    memory_usage = Column(Float, nullable=True)
    cpu_usage = Column(Float, nullable=True)
    gpu_usage = Column(Float, nullable=True)
    network_latency = Column(Float, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class CategoryStat(Base):
    """Accumulated outcome of one category within one session."""
    __tablename__ = "category_stats"
    __table_args__ = (
        UniqueConstraint("session_id", "category_name", name="uq_category_stats_session_category"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(255),
        ForeignKey("sessions.session_id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    category_name = Column(String(255), nullable=False)
    total_cards = Column(Integer, nullable=False, default=0)
    accepted_cards = Column(Integer, nullable=False, default=0)
    rejected_cards = Column(Integer, nullable=False, default=0)
    average_decision_time = Column(Float, nullable=False, default=0.0)
    completion_time = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


def _weighted_average(incoming):
    """Card-weighted mean of the stored and incoming decision times."""
    combined = CategoryStat.total_cards + incoming.total_cards
    return case(
        (
            combined > 0,
            (
                CategoryStat.average_decision_time * CategoryStat.total_cards
                + incoming.average_decision_time * incoming.total_cards
            ) / combined,
        ),
        else_=0.0,
    )


def build_category_upsert(dialect_name: str, values: dict):
    """Build an insert-or-accumulate statement for category_stats.

    Counts and completion time add onto the existing row for the same
    (session_id, category_name); the decision time becomes the weighted
    mean.  All of it happens in one statement so concurrent requests for
    the same key cannot lose updates.
    """
    now = utcnow()
    values = {**values, "created_at": now, "updated_at": now}

    if dialect_name in ("sqlite", "postgresql"):
        insert = sqlite_insert if dialect_name == "sqlite" else postgresql_insert
        stmt = insert(CategoryStat).values(**values)
        incoming = stmt.excluded
        return stmt.on_conflict_do_update(
            index_elements=["session_id", "category_name"],
            set_={
                "average_decision_time": _weighted_average(incoming),
                "total_cards": CategoryStat.total_cards + incoming.total_cards,
                "accepted_cards": CategoryStat.accepted_cards + incoming.accepted_cards,
                "rejected_cards": CategoryStat.rejected_cards + incoming.rejected_cards,
                "completion_time": CategoryStat.completion_time + incoming.completion_time,
                "updated_at": now,
            },
        )

    if dialect_name in ("mysql", "mariadb"):
        stmt = mysql_insert(CategoryStat).values(**values)
        incoming = stmt.inserted
        # MySQL applies assignments left to right against the updated row,
        # so the average must be computed before total_cards changes.
        return stmt.on_duplicate_key_update([
            ("average_decision_time", _weighted_average(incoming)),
            ("total_cards", CategoryStat.total_cards + incoming.total_cards),
            ("accepted_cards", CategoryStat.accepted_cards + incoming.accepted_cards),
            ("rejected_cards", CategoryStat.rejected_cards + incoming.rejected_cards),
            ("completion_time", CategoryStat.completion_time + incoming.completion_time),
            ("updated_at", now),
        ])

    raise NotImplementedError(f"Category upsert is not supported on {dialect_name}")
