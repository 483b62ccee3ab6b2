# placement_engine/scheduler/scheduler.py
"""Placement scheduler - keeps exactly one Workload Unit placed."""

import logging
import threading
from typing import Any, Dict, Optional, Set
from uuid import UUID

from placement_engine.capacity.models import Host
from placement_engine.capacity.service import CapacityPoolService
from placement_engine.core.errors import (
    AttachmentConflict,
    CapacityExhausted,
    PlacementError,
    PreconditionFailure,
    RuntimeUnavailable,
)
from placement_engine.core.events import NullEventEmitter
from placement_engine.core.events_model import PlacementEvent
from placement_engine.core.models import Placement, PlacementState, SchedulerRecord
from placement_engine.core.repository import PlacementRepository
from placement_engine.core.retry import RetryPolicy
from placement_engine.core.state_machine import PlacementStateMachine
from placement_engine.runtime.runtime import WorkloadRuntime
from placement_engine.storage.binder import VolumeBinder
from placement_engine.workload.models import UnitStatus, WorkloadUnit, WorkloadUnitSpec
from placement_engine.workload.secrets import SecretResolver

logger = logging.getLogger(__name__)


class PlacementScheduler:
    """
    Places exactly one Workload Unit onto the capacity pool.

    State machine: UNPLACED -> PLACING -> PLACED -> REPLACING -> PLACED.
    Any failure while placing or replacing falls back to UNPLACED and the
    controller retries on its next cycle.

    Order inside a placement:
    1. Resolve secrets (fatal if missing)
    2. Select a host (retry with backoff on CapacityExhausted)
    3. Attach the volume, if configured (retry on AttachmentConflict)
    4. Verify the attachment, then start the unit

    Replacement tears the old placement down completely (unit stopped, volume
    release confirmed, placement superseded) before a new one is made, so two
    placements never coexist. A unit whose stop cannot be confirmed is fenced
    by terminating its host before the volume is released.

    An unreachable runtime is only treated as a host failure after
    ``unreachable_threshold`` consecutive reconciles.
    """

    def __init__(
        self,
        *,
        pool_service: CapacityPoolService,
        runtime: WorkloadRuntime,
        secret_resolver: SecretResolver,
        workload_spec: WorkloadUnitSpec,
        repository: PlacementRepository,
        volume_binder: Optional[VolumeBinder] = None,
        capacity_retry: Optional[RetryPolicy] = None,
        attachment_retry: Optional[RetryPolicy] = None,
        unreachable_threshold: int = 3,
        emitters=None,
    ):
        self._pool = pool_service
        self._runtime = runtime
        self._secrets = secret_resolver
        self._spec = workload_spec
        self._repo = repository
        self._binder = volume_binder
        self._capacity_retry = capacity_retry or RetryPolicy()
        self._attachment_retry = attachment_retry or RetryPolicy()
        self._emitters = emitters or NullEventEmitter()
        self._unreachable_threshold = unreachable_threshold
        self._unreachable_checks = 0

        # One reconciliation at a time
        self._lock = threading.Lock()

        self._placement: Optional[Placement] = None
        self._unit: Optional[WorkloadUnit] = None

        self._recover()

    # ============================================
    # READ ACCESS
    # ============================================

    @property
    def state(self) -> PlacementState:
        return self._repo.get_record().state

    @property
    def current_placement(self) -> Optional[Placement]:
        return self._placement

    @property
    def current_unit(self) -> Optional[WorkloadUnit]:
        return self._unit

    @property
    def volume_binder(self) -> Optional[VolumeBinder]:
        return self._binder

    def current_host(self) -> Optional[Host]:
        if not self._placement:
            return None
        return self._pool.get_host(self._placement.host_id)

    def serving_placement_ids(self) -> Set[UUID]:
        """
        Placements whose unit may still be answering traffic.

        Teardown stops the unit (or terminates its host) before a successor
        is placed, so only the current placement ever qualifies.
        """
        if self._placement is None or self._unit is None:
            return set()
        if self._unit.status != UnitStatus.RUNNING:
            return set()
        return {self._placement.placement_id}

    def status(self) -> Dict[str, Any]:
        record = self._repo.get_record()
        return {
            "state": record.state.value,
            "generation": record.generation,
            "last_error": record.last_error,
            "consecutive_failures": record.consecutive_failures,
            "placement": self._placement.to_dict() if self._placement else None,
            "unit_id": self._unit.unit_id if self._unit else None,
            "volume_id": self._binder.volume_id if self._binder else None,
        }

    # ============================================
    # OPERATIONS
    # ============================================

    def deploy(self) -> Placement:
        """
        Create the placement if none exists.

        Raises:
            CapacityExhausted: Retries exhausted
            AttachmentConflict: Volume still attached elsewhere
            SecretResolutionFailure: Required secret missing (deployment-blocking)
        """
        with self._lock:
            return self._deploy_locked()

    def reconcile(self) -> Optional[Placement]:
        """
        One reconciliation pass.

        Deploys when unplaced; replaces the placement when its host is gone or
        an essential process of the unit is down.
        """
        with self._lock:
            record = self._repo.get_record()

            if record.state == PlacementState.UNPLACED:
                return self._deploy_locked()

            if record.state != PlacementState.PLACED or not self._placement:
                return self._placement

            host = self._pool.get_host(self._placement.host_id)
            if host is None or not host.is_live():
                self._replace_locked(record, reason=f"host {self._placement.host_id} gone")
                return self._placement

            try:
                health = self._runtime.unit_status(host, self._unit)
            except RuntimeUnavailable as e:
                self._unreachable_checks += 1
                logger.warning(
                    f"[scheduler] runtime on {host.host_id} unreachable "
                    f"({self._unreachable_checks}/{self._unreachable_threshold}): {e}"
                )
                if self._unreachable_checks < self._unreachable_threshold:
                    return self._placement

                self._pool.mark_failed(host.host_id, reason="runtime unreachable")
                self._replace_locked(record, reason=f"runtime on {host.host_id} unreachable")
                return self._placement

            self._unreachable_checks = 0
            if health.failed:
                self._unit.status = UnitStatus.FAILED
                which = "health responder" if health.primary_running else "primary process"
                self._replace_locked(record, reason=f"{which} down on {host.host_id}")

            return self._placement

    def handle_host_failure(self, host_id: str) -> Optional[Placement]:
        """Replace the placement if it lives on ``host_id``."""
        with self._lock:
            record = self._repo.get_record()
            if (
                record.state == PlacementState.PLACED
                and self._placement
                and self._placement.host_id == host_id
            ):
                self._replace_locked(record, reason=f"host {host_id} failed")
            return self._placement

    def handle_unit_failure(
        self,
        reason: str,
        host_id: Optional[str] = None,
        placement_id: Optional[UUID] = None,
    ) -> Optional[Placement]:
        """
        Replace the unit (e.g. health probe failures persisted).

        Ignored when ``host_id`` or ``placement_id`` does not match the
        current placement; a report about a placement that has already been
        replaced must not tear down its successor on the same host.
        """
        with self._lock:
            record = self._repo.get_record()
            if record.state != PlacementState.PLACED or not self._placement:
                return self._placement
            if host_id is not None and host_id != self._placement.host_id:
                logger.info(f"[scheduler] ignoring failure for stale host {host_id}")
                return self._placement
            if placement_id is not None and placement_id != self._placement.placement_id:
                logger.info(f"[scheduler] ignoring failure for superseded placement {placement_id}")
                return self._placement

            if self._unit:
                self._unit.status = UnitStatus.FAILED
            self._replace_locked(record, reason=reason)
            return self._placement

    def deprovision(self, delete_volume: bool = False) -> None:
        """Tear down the placement; delete the volume only when asked."""
        with self._lock:
            record = self._repo.get_record()
            if self._placement:
                self._teardown(record, reason="deprovision")
            if record.state != PlacementState.UNPLACED:
                self._transition(record, PlacementState.UNPLACED)
                self._repo.save_record(record)
            if delete_volume and self._binder:
                self._binder.deprovision()
            logger.info("[scheduler] deprovisioned")

    # ============================================
    # INTERNALS (lock held)
    # ============================================

    def _deploy_locked(self) -> Placement:
        record = self._repo.get_record()

        if record.state == PlacementState.PLACED and self._placement:
            return self._placement

        self._transition(record, PlacementState.PLACING)
        self._repo.save_record(record)

        try:
            return self._place(record)
        except PlacementError as e:
            self._fail(record, e)
            raise

    def _replace_locked(self, record: SchedulerRecord, reason: str) -> Placement:
        logger.warning(f"[scheduler] replacing placement: {reason}")

        self._transition(record, PlacementState.REPLACING)
        self._repo.save_record(record)

        try:
            self._teardown(record, reason=reason)
            return self._place(record)
        except PlacementError as e:
            self._fail(record, e)
            raise

    def _place(self, record: SchedulerRecord) -> Placement:
        # Secrets first: a missing secret must block before anything is touched
        secret_env = self._secrets.resolve(self._spec)

        host = self._capacity_retry.run(
            self._select_host,
            retry_on=(CapacityExhausted,),
            description="host allocation",
            before_retry=self._report_retry,
        )

        volume_id = None
        if self._binder:
            self._attachment_retry.run(
                lambda: self._binder.attach(host.host_id),
                retry_on=(AttachmentConflict,),
                description=f"volume attach to {host.host_id}",
                before_retry=self._report_retry,
            )
            volume_id = self._binder.volume_id

            # Attach-then-start
            if not self._binder.is_attached_to(host.host_id):
                raise PreconditionFailure(
                    f"Volume {volume_id} not attached to {host.host_id}; refusing to start"
                )

        try:
            unit = self._runtime.start_unit(host, self._spec, secret_env, volume_id=volume_id)
        except PlacementError:
            if self._binder:
                self._binder.release(host.host_id)
            raise

        self._pool.occupy(host.host_id, self._spec.required_memory_mib, self._spec.required_storage_gib)

        placement = Placement.new(
            host_id=host.host_id,
            unit_id=unit.unit_id,
            volume_id=volume_id,
            host_address=host.address,
        )
        self._repo.create_placement(placement)
        self._placement = placement
        self._unit = unit
        self._unreachable_checks = 0

        record.active_placement_id = placement.placement_id
        record.generation += 1
        record.last_error = None
        record.consecutive_failures = 0
        self._transition(record, PlacementState.PLACED)
        self._repo.save_record(record)

        self._emitters.emit([PlacementEvent.placement_created(placement)])
        logger.info(
            f"[scheduler] ✅ placed unit {unit.unit_id} on {host.host_id} "
            f"(generation {record.generation}, volume {volume_id})"
        )
        return placement

    def _select_host(self) -> Host:
        required_memory = self._spec.required_memory_mib
        required_storage = self._spec.required_storage_gib

        host = self._pool.select_host(required_memory, required_storage)
        if host is None:
            # Pool may be short of a replacement host
            self._pool.ensure_capacity()
            host = self._pool.select_host(required_memory, required_storage)

        if host is None:
            raise CapacityExhausted(
                f"No host with {required_memory}MiB memory and {required_storage}GiB disk free"
            )
        return host

    def _teardown(self, record: SchedulerRecord, reason: str) -> None:
        """Stop the unit, release the volume and supersede the placement."""
        old = self._placement
        if old is None:
            return

        host = self._pool.get_host(old.host_id)

        if host is not None and host.is_live() and self._unit is not None:
            try:
                self._runtime.stop_unit(host, self._unit)
            except RuntimeUnavailable as e:
                # Unit may still be running against the volume: fence the host
                logger.warning(f"[scheduler] could not stop unit on {old.host_id}, terminating host: {e}")
                self._pool.mark_failed(old.host_id, reason="unit stop unconfirmed")

        if self._binder:
            try:
                self._binder.release(old.host_id)
            except AttachmentConflict as e:
                # Attach waits for the release before any new attachment
                logger.warning(f"[scheduler] release not confirmed yet: {e}")

        self._pool.vacate(old.host_id, self._spec.required_memory_mib, self._spec.required_storage_gib)

        self._repo.supersede_placement(old.placement_id)
        old.supersede()
        self._emitters.emit([PlacementEvent.placement_superseded(old, reason)])

        self._placement = None
        self._unit = None
        record.active_placement_id = None

    def _fail(self, record: SchedulerRecord, error: PlacementError) -> None:
        record.last_error = f"{type(error).__name__}: {error}"
        record.consecutive_failures += 1
        self._transition(record, PlacementState.UNPLACED)
        self._repo.save_record(record)

        self._emitters.emit([PlacementEvent.placement_failed(str(error), type(error).__name__)])
        logger.error(f"[scheduler] ❌ placement failed: {record.last_error}")

    def _report_retry(self, error: BaseException) -> None:
        self._emitters.emit([PlacementEvent.placement_failed(str(error), type(error).__name__)])

    def _transition(self, record: SchedulerRecord, new_state: PlacementState) -> None:
        previous = record.state
        PlacementStateMachine.transition(record, new_state)
        if previous != new_state:
            self._emitters.emit([PlacementEvent.state_changed(previous, new_state, record.generation)])

    def _recover(self) -> None:
        """Rebuild in-memory state from the repository after a restart."""
        record = self._repo.get_record()
        active = list(self._repo.list_active())

        if active:
            self._placement = active[0]
            self._unit = WorkloadUnit(
                unit_id=self._placement.unit_id,
                host_id=self._placement.host_id,
                spec_name=self._spec.name,
                status=UnitStatus.RUNNING,
            )

        if record.state in (PlacementState.PLACING, PlacementState.REPLACING):
            # Interrupted mid-operation; reconcile verifies whatever is left
            recovered = PlacementState.PLACED if self._placement else PlacementState.UNPLACED
            logger.warning(
                f"[scheduler] recovering from interrupted {record.state.value}, now {recovered.value}"
            )
            record.state = recovered
            self._repo.save_record(record)

        if record.state == PlacementState.PLACED and not self._placement:
            record.state = PlacementState.UNPLACED
            self._repo.save_record(record)
