"""
Database models for the NCLEX CAT service.

Three tables back the adaptive test:
    items          calibrated 3PL item bank with live exposure counters
    cat_sessions   one row per adaptive session (optimistically versioned)
    cat_responses  append-only scored responses, one per administered item
"""
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from libs.domain_types import (
    CATOutcome,
    ItemType,
    NclexCategory,
    SessionStatus,
    TerminationReason,
)

from .base import Base


class Item(Base):
    """Calibrated NCLEX item under the 3PL model."""

    __tablename__ = "items"

    id = Column(Integer, primary_key=True, index=True)
    category = Column(Enum(NclexCategory), nullable=False)
    item_type = Column(
        Enum(ItemType), default=ItemType.SINGLE_SELECT, nullable=False
    )
    stem = Column(Text, nullable=False)
    options = Column(JSON, nullable=False)  # [{"id": "a", "text": "..."}, ...]
    correct_options = Column(JSON, nullable=False)  # ["a"] or ["a", "c", ...]
    explanation = Column(Text, nullable=False, default="")

    # IRT 3PL parameters
    difficulty = Column(Float, nullable=False)  # b
    discrimination = Column(Float, nullable=False)  # a
    guessing = Column(Float, nullable=False, default=0.0)  # c

    # Incremented in SQL (exposure_count = exposure_count + 1), never read-modify-write
    exposure_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_items_category", "category"),
        Index("ix_items_active", "is_active"),
        CheckConstraint("discrimination > 0", name="ck_items_discrimination_positive"),
        CheckConstraint(
            "guessing >= 0 AND guessing < 1", name="ck_items_guessing_range"
        ),
        CheckConstraint("exposure_count >= 0", name="ck_items_exposure_nonnegative"),
    )


class CATSessionRecord(Base):
    """Persisted state of an adaptive test session."""

    __tablename__ = "cat_sessions"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    status = Column(
        Enum(SessionStatus), default=SessionStatus.ACTIVE, nullable=False, index=True
    )

    theta = Column(Float, nullable=False, default=0.0)
    standard_error = Column(Float, nullable=False, default=1.0)
    passing_probability = Column(Float, nullable=False, default=0.5)
    ci_lower = Column(Float, nullable=False)
    ci_upper = Column(Float, nullable=False)
    probability_lower = Column(Float, nullable=False)
    probability_upper = Column(Float, nullable=False)
    theta_history = Column(JSON, nullable=False, default=list)

    current_item_id = Column(
        Integer, ForeignKey("items.id", ondelete="SET NULL"), nullable=True
    )
    time_spent = Column(Float, nullable=False, default=0.0)  # seconds
    started_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    completed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    termination_reason = Column(Enum(TerminationReason), nullable=True)
    result = Column(Enum(CATOutcome), nullable=True)

    # Optimistic concurrency: a stale UPDATE raises StaleDataError
    version = Column(Integer, nullable=False)

    responses = relationship(
        "CATResponseRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="CATResponseRecord.sequence",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_cat_sessions_user_status", "user_id", "status"),
        Index("ix_cat_sessions_user_completed", "user_id", "completed_at"),
    )


class CATResponseRecord(Base):
    """A scored response within an adaptive session."""

    __tablename__ = "cat_responses"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        String(36),
        ForeignKey("cat_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence = Column(Integer, nullable=False)  # 1-based administration order
    item_id = Column(
        Integer, ForeignKey("items.id", ondelete="CASCADE"), nullable=False
    )
    category = Column(String(64), nullable=False)
    answer = Column(JSON, nullable=False)  # Selected option ids
    is_correct = Column(Boolean, nullable=False)
    time_spent = Column(Float, nullable=False, default=0.0)
    theta_before = Column(Float, nullable=False)

    # Item parameters at the time of administration
    discrimination = Column(Float, nullable=False)
    difficulty = Column(Float, nullable=False)
    guessing = Column(Float, nullable=False)

    answered_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    session = relationship("CATSessionRecord", back_populates="responses")

    __table_args__ = (
        UniqueConstraint("session_id", "item_id", name="uq_cat_response_item"),
        UniqueConstraint("session_id", "sequence", name="uq_cat_response_sequence"),
    )
