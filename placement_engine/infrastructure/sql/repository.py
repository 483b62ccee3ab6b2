"""SQL repository implementation for placements."""

from datetime import datetime, timezone
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from placement_engine.core.errors import PlacementConcurrencyError, PlacementNotFound
from placement_engine.core.models import Placement, SchedulerRecord
from placement_engine.core.repository import PlacementRepository
from placement_engine.infrastructure.sql.database import session_scope
from placement_engine.infrastructure.sql.models import PlacementORM, SchedulerStateORM


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def placement_to_orm(placement: Placement) -> PlacementORM:
    """Convert placement domain model to ORM."""
    return PlacementORM(
        placement_id=str(placement.placement_id),
        host_id=placement.host_id,
        unit_id=placement.unit_id,
        volume_id=placement.volume_id,
        host_address=placement.host_address,
        created_at=placement.created_at,
        superseded_at=placement.superseded_at,
    )


def orm_to_placement(orm: PlacementORM) -> Placement:
    """Convert ORM to placement domain model."""
    return Placement(
        placement_id=UUID(orm.placement_id),
        host_id=orm.host_id,
        unit_id=orm.unit_id,
        volume_id=orm.volume_id,
        host_address=orm.host_address,
        created_at=_aware(orm.created_at),
        superseded_at=_aware(orm.superseded_at),
    )


class SqlPlacementRepository(PlacementRepository):
    """
    SQLAlchemy-backed state store.

    Survives controller restarts; the scheduler rebuilds its in-memory view
    from here on startup.
    """

    def __init__(self, session_factory: sessionmaker, scheduler_name: str = "default"):
        self._session_factory = session_factory
        self._name = scheduler_name

    # -------------------------
    # Scheduler record
    # -------------------------

    def get_record(self) -> SchedulerRecord:
        session = self._session_factory()
        try:
            orm = session.get(SchedulerStateORM, self._name)
            if not orm:
                return SchedulerRecord()
            return SchedulerRecord(
                state=orm.state,
                active_placement_id=UUID(orm.active_placement_id) if orm.active_placement_id else None,
                generation=orm.generation,
                last_error=orm.last_error,
                consecutive_failures=orm.consecutive_failures,
                placing_started_at=_aware(orm.placing_started_at),
                placed_at=_aware(orm.placed_at),
                replacing_started_at=_aware(orm.replacing_started_at),
                updated_at=_aware(orm.updated_at),
            )
        finally:
            session.close()

    def save_record(self, record: SchedulerRecord) -> None:
        with session_scope(self._session_factory) as session:
            orm = session.get(SchedulerStateORM, self._name)
            if orm is None:
                orm = SchedulerStateORM(scheduler_name=self._name)
                session.add(orm)

            orm.state = record.state
            orm.active_placement_id = str(record.active_placement_id) if record.active_placement_id else None
            orm.generation = record.generation
            orm.last_error = record.last_error
            orm.consecutive_failures = record.consecutive_failures
            orm.placing_started_at = record.placing_started_at
            orm.placed_at = record.placed_at
            orm.replacing_started_at = record.replacing_started_at
            orm.updated_at = record.updated_at

    # -------------------------
    # Placements
    # -------------------------

    def create_placement(self, placement: Placement) -> None:
        session = self._session_factory()
        try:
            active = (
                session.query(PlacementORM)
                .filter(PlacementORM.superseded_at.is_(None))
                .first()
            )
            if active is not None:
                raise PlacementConcurrencyError(
                    f"Placement {active.placement_id} on {active.host_id} is still active"
                )

            session.add(placement_to_orm(placement))
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise PlacementConcurrencyError(f"Placement {placement.placement_id} already exists") from e
        finally:
            session.close()

    def supersede_placement(self, placement_id: UUID) -> None:
        with session_scope(self._session_factory) as session:
            orm = session.get(PlacementORM, str(placement_id))
            if not orm:
                raise PlacementNotFound(f"Placement {placement_id} not found")
            if orm.superseded_at is None:
                orm.superseded_at = datetime.now(timezone.utc)

    def get_placement(self, placement_id: UUID) -> Optional[Placement]:
        session = self._session_factory()
        try:
            orm = session.get(PlacementORM, str(placement_id))
            return orm_to_placement(orm) if orm else None
        finally:
            session.close()

    def list_active(self) -> Iterable[Placement]:
        session = self._session_factory()
        try:
            rows = (
                session.query(PlacementORM)
                .filter(PlacementORM.superseded_at.is_(None))
                .all()
            )
            return [orm_to_placement(r) for r in rows]
        finally:
            session.close()

    def list_history(self, limit: int = 50) -> Iterable[Placement]:
        session = self._session_factory()
        try:
            rows = (
                session.query(PlacementORM)
                .order_by(PlacementORM.created_at.desc())
                .limit(limit)
                .all()
            )
            return [orm_to_placement(r) for r in rows]
        finally:
            session.close()
