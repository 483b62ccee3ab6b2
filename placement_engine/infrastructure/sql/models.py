#placement_engine\infrastructure\sql\models.py
"""SQLAlchemy ORM models for the placement state store."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Index, Integer, String, Text

from placement_engine.core.models import PlacementState
from placement_engine.infrastructure.sql.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class PlacementORM(Base):
    """
    Placement table - one row per placement ever made.

    Indexes:
    - Primary key on placement_id
    - Index on superseded_at to find the active placement
    """

    __tablename__ = "placements"

    placement_id = Column(String(36), primary_key=True, nullable=False)

    host_id = Column(String(255), nullable=False, index=True)
    unit_id = Column(String(255), nullable=False)
    volume_id = Column(String(255), nullable=True)
    host_address = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    superseded_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_placements_active", "superseded_at"),
    )

    def __repr__(self):
        return f"<Placement(id={self.placement_id}, host={self.host_id}, active={self.superseded_at is None})>"


class SchedulerStateORM(Base):
    """Scheduler state - a single row keyed by scheduler name."""

    __tablename__ = "scheduler_state"

    scheduler_name = Column(String(64), primary_key=True)

    state = Column(
        SQLEnum(PlacementState, name="placement_state"),
        nullable=False,
        default=PlacementState.UNPLACED,
    )
    active_placement_id = Column(String(36), nullable=True)
    generation = Column(Integer, nullable=False, default=0)

    last_error = Column(Text, nullable=True)
    consecutive_failures = Column(Integer, nullable=False, default=0)

    placing_started_at = Column(DateTime(timezone=True), nullable=True)
    placed_at = Column(DateTime(timezone=True), nullable=True)
    replacing_started_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
