# placement_engine/core/state_machine.py

from datetime import datetime, timezone

from placement_engine.core.errors import InvalidStateTransition
from placement_engine.core.models import PlacementState, SchedulerRecord


ALLOWED_TRANSITIONS = {
    PlacementState.UNPLACED: {
        PlacementState.PLACING,
    },
    PlacementState.PLACING: {
        PlacementState.PLACED,
        PlacementState.UNPLACED,
    },
    PlacementState.PLACED: {
        PlacementState.REPLACING,
        PlacementState.UNPLACED,
    },
    PlacementState.REPLACING: {
        PlacementState.PLACED,
        PlacementState.UNPLACED,
    },
}


class PlacementStateMachine:
    @staticmethod
    def transition(
        record: SchedulerRecord,
        new_state: PlacementState,
        *,
        now: datetime | None = None,
    ) -> SchedulerRecord:
        now = now or datetime.now(timezone.utc)

        current = record.state

        if current == new_state:
            return record

        allowed = ALLOWED_TRANSITIONS.get(current, set())
        if new_state not in allowed:
            raise InvalidStateTransition(
                f"Cannot transition from {current.value} to {new_state.value}"
            )

        # Timestamp semantics
        if new_state == PlacementState.PLACING:
            record.placing_started_at = now

        elif new_state == PlacementState.PLACED:
            record.placed_at = now
            record.replacing_started_at = None

        elif new_state == PlacementState.REPLACING:
            record.replacing_started_at = now

        elif new_state == PlacementState.UNPLACED:
            record.active_placement_id = None
            record.placed_at = None
            record.replacing_started_at = None

        record.state = new_state
        record.updated_at = now
        return record
