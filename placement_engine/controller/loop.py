# placement_engine/controller/loop.py
"""Placement controller - the reconciliation loop."""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from placement_engine.capacity.service import CapacityPoolService
from placement_engine.core.errors import (
    CapacityExhausted,
    PlacementError,
    PreconditionFailure,
    SecretResolutionFailure,
)
from placement_engine.dns.publisher import NamePublisher
from placement_engine.exposure.layer import ExposureLayer
from placement_engine.exposure.prober import HealthProber
from placement_engine.scheduler.scheduler import PlacementScheduler

logger = logging.getLogger(__name__)

# Errors that keep the deployment from serving until someone intervenes
DEPLOYMENT_BLOCKING = (SecretResolutionFailure, CapacityExhausted, PreconditionFailure)


class PlacementController:
    """
    Control loop driving the placement engine.

    Each cycle:
    1. Detect stale hosts and consume host-replaced notices
    2. Act on persistent probe failures reported by the prober
    3. Reconcile the scheduler (deploy / replace)
    4. Re-derive target group membership from the placement
    5. Publish the front door address under the stable name

    Probing runs on its own thread (HealthProber).
    """

    def __init__(
        self,
        *,
        scheduler: PlacementScheduler,
        pool_service: CapacityPoolService,
        exposure: ExposureLayer,
        publisher: NamePublisher,
        prober: Optional[HealthProber] = None,
        reconcile_interval: float = 5.0,
        static_front_door: Optional[str] = None,
    ):
        self._scheduler = scheduler
        self._pool = pool_service
        self._exposure = exposure
        self._publisher = publisher
        self._prober = prober
        if prober is not None:
            prober.subscribe(self.report_probe_failure)
        self._interval = reconcile_interval
        self._static_front_door = static_front_door

        self.blocked_reason: Optional[str] = None
        self.cycles = 0

        self._probe_failures: List[Tuple[UUID, str, int]] = []
        self._failures_lock = threading.Lock()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ============================================
    # LIFECYCLE
    # ============================================

    def start(self):
        logger.info("=" * 80)
        logger.info("🚀 PLACEMENT CONTROLLER STARTED")
        logger.info("=" * 80)
        logger.info(f"Reconcile interval: {self._interval}s")
        logger.info(f"Published name: {self._publisher.name}")

        if self._prober:
            self._prober.start()

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="placement-controller", daemon=True)
        self._thread.start()

    def stop(self):
        logger.info("[controller] stopping")
        self._stop_event.set()
        if self._thread:
            self._thread.join()
        if self._prober:
            self._prober.stop()
        logger.info("Placement controller stopped")

    def _run_loop(self):
        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception as e:
                logger.error(f"Error in reconcile cycle: {e}", exc_info=True)

            self._stop_event.wait(self._interval)

    # ============================================
    # CYCLE
    # ============================================

    def report_probe_failure(self, placement_id: UUID, host_id: str, failures: int) -> None:
        """Prober callback; acted upon in the next cycle."""
        with self._failures_lock:
            self._probe_failures.append((placement_id, host_id, failures))

    def run_cycle(self) -> Dict[str, Any]:
        """Single reconciliation cycle."""
        self.cycles += 1

        self._pool.check_stale_hosts()
        for host_id in self._pool.drain_replaced_hosts():
            self._call_scheduler(self._scheduler.handle_host_failure, host_id)

        with self._failures_lock:
            probe_failures, self._probe_failures = self._probe_failures, []
        for placement_id, host_id, failures in probe_failures:
            self._call_scheduler(
                self._scheduler.handle_unit_failure,
                f"health probe failed {failures} times on {host_id}",
                host_id,
                placement_id,
            )

        self._call_scheduler(self._scheduler.reconcile)

        placement = self._scheduler.current_placement
        self._exposure.sync(placement, self._scheduler.serving_placement_ids())

        address = self._resolve_front_door()
        if address:
            self._exposure.set_front_door_address(address)
        self._publisher.publish(self._exposure.front_door_address)

        return self.summary()

    def summary(self) -> Dict[str, Any]:
        return {
            "cycle": self.cycles,
            "scheduler": self._scheduler.status(),
            "blocked_reason": self.blocked_reason,
            "front_door_address": self._exposure.front_door_address,
            "published_address": self._publisher.published_address,
        }

    def _call_scheduler(self, fn, *args) -> None:
        try:
            fn(*args)
        except DEPLOYMENT_BLOCKING as e:
            self.blocked_reason = f"{type(e).__name__}: {e}"
            logger.error(f"[controller] ⛔ deployment blocked: {self.blocked_reason}")
        except PlacementError as e:
            logger.warning(f"[controller] {type(e).__name__}: {e}; retrying next cycle")
        else:
            if self._scheduler.current_placement is not None:
                self.blocked_reason = None

    def _resolve_front_door(self) -> Optional[str]:
        if self._static_front_door:
            return self._static_front_door

        # Without a dedicated front door the host's public address is exposed
        host = self._scheduler.current_host()
        if host is None:
            return None
        return host.public_ip or host.internal_ip
