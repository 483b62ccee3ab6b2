# placement_engine/exposure/prober.py
"""
Health Prober - polls the Health Responder of every target group member.

Runs on its own thread, independently of placement reconciliation.
"""

import logging
import threading
from typing import Callable, Optional
from uuid import UUID

import requests

from placement_engine.core.errors import HealthCheckTimeout
from placement_engine.exposure.models import HealthProbe, ProbeTarget, TargetStatus
from placement_engine.exposure.target_group import TargetGroup

logger = logging.getLogger(__name__)


def check_http_health(target: ProbeTarget, probe: HealthProbe) -> bool:
    """
    Perform an HTTP health check against the Health Responder.

    Returns:
        True if healthy (2xx/3xx), False otherwise

    Raises:
        HealthCheckTimeout: If the responder did not answer in time
    """
    try:
        response = requests.get(target.url, timeout=probe.timeout_seconds)
    except requests.exceptions.Timeout as e:
        raise HealthCheckTimeout(f"{target.url} unanswered after {probe.timeout_seconds}s") from e
    except requests.exceptions.RequestException as e:
        logger.warning(f"[{target.host_id}] ❌ HTTP check error: {e}")
        return False

    is_healthy = 200 <= response.status_code < 400
    if is_healthy:
        logger.debug(f"[{target.host_id}] ✅ HTTP check OK: {target.url} ({response.status_code})")
    else:
        logger.warning(
            f"[{target.host_id}] ❌ HTTP check FAIL: {target.url} returned {response.status_code}"
        )
    return is_healthy


class HealthProber:
    """
    Background probe loop for one target group.

    - Probes every member each ``probe.interval_seconds``
    - Target group thresholds decide HEALTHY / UNHEALTHY
    - Calls ``on_persistent_failure(placement_id, host_id, failures)`` once
      when a current member reaches ``reschedule_after_failures`` consecutive
      failures; the placement id lets the receiver drop reports about a
      placement that has since been replaced
    """

    def __init__(
        self,
        target_group: TargetGroup,
        *,
        check: Callable[[ProbeTarget, HealthProbe], bool] = check_http_health,
        reschedule_after_failures: int = 6,
        on_persistent_failure: Optional[Callable[[UUID, str, int], None]] = None,
    ):
        self._group = target_group
        self._check = check
        self._reschedule_after = reschedule_after_failures
        self._on_persistent_failure = on_persistent_failure

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def subscribe(self, callback: Callable[[UUID, str, int], None]) -> None:
        """Set the persistent-failure callback."""
        self._on_persistent_failure = callback

    def start(self):
        """Start the probe loop on a daemon thread."""
        logger.info(
            f"[prober] 🏥 probing {self._group.name} every {self._group.probe.interval_seconds}s "
            f"(healthy={self._group.probe.healthy_threshold}, "
            f"unhealthy={self._group.probe.unhealthy_threshold})"
        )
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="health-prober", daemon=True)
        self._thread.start()

    def stop(self):
        """Stop the probe loop."""
        self._stop_event.set()
        if self._thread:
            self._thread.join()
        logger.info("[prober] stopped")

    def _run_loop(self):
        while not self._stop_event.is_set():
            try:
                self.probe_once()
            except Exception as e:
                logger.error(f"[prober] Error in probe cycle: {e}", exc_info=True)

            self._stop_event.wait(self._group.probe.interval_seconds)

    def probe_once(self) -> None:
        """Single probe cycle over the current membership."""
        for target in self._group.probe_targets():
            try:
                healthy = self._check(target, self._group.probe)
            except HealthCheckTimeout as e:
                logger.warning(f"[{target.host_id}] ❌ {e}")
                healthy = False

            new_status = self._group.record_probe(target, healthy)

            if new_status == TargetStatus.UNHEALTHY:
                logger.warning(f"[{target.host_id}] marked UNHEALTHY, listeners stop routing")

            if healthy or self._on_persistent_failure is None:
                continue

            failures = self._group.consecutive_failures(target.host_id)
            if failures == self._reschedule_after:
                logger.warning(
                    f"[{target.host_id}] {failures} consecutive probe failures, requesting reschedule"
                )
                self._on_persistent_failure(target.placement_id, target.host_id, failures)
