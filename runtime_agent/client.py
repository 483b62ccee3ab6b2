# runtime_agent/client.py
"""Runtime Agent client used by the placement engine."""

import requests
from typing import Dict, Any, Optional
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


@dataclass
class UnitDeployment:
    """Result from a Workload Unit deployment."""
    unit_id: str
    primary_container_id: str
    responder_container_id: str
    status: str


@dataclass
class UnitProcessStatus:
    """Per-container running state of a Workload Unit."""
    unit_id: str
    primary_running: bool
    responder_running: bool
    primary_status: str
    responder_status: str


class RuntimeAgentError(RuntimeError):
    """Agent unreachable or returned an error."""


class RuntimeAgentClient:
    """Client for communicating with a host's Runtime Agent."""

    def __init__(self, agent_url: str, timeout: int = 30):
        """
        Initialize client.

        Args:
            agent_url: Base URL of runtime agent (e.g., "http://10.0.1.10:9000")
            timeout: Request timeout in seconds
        """
        self.base_url = agent_url.rstrip('/')
        self.timeout = timeout

    def health_check(self) -> bool:
        """
        Check if agent is healthy.

        Returns:
            True if healthy, False otherwise
        """
        try:
            response = requests.get(f"{self.base_url}/health", timeout=5)
            return response.status_code == 200
        except requests.exceptions.RequestException as e:
            logger.warning(f"Agent health check failed: {e}")
            return False

    def get_host_info(self) -> Dict[str, Any]:
        """Get host information (memory, running containers)."""
        return self._request("GET", "/info", timeout=10)

    def deploy_unit(self, payload: Dict[str, Any]) -> UnitDeployment:
        """
        Deploy a Workload Unit (primary + health responder).

        Args:
            payload: Unit specification including resolved secrets

        Returns:
            UnitDeployment

        Raises:
            RuntimeAgentError: If deployment fails
        """
        unit_id = payload["unit_id"]
        logger.info(f"[{unit_id}] Deploying workload unit to {self.base_url}")

        data = self._request("POST", "/units", json=payload)

        logger.info(f"[{unit_id}] ✅ Unit deployed: {data['primary_container_id'][:12]}")

        return UnitDeployment(
            unit_id=data["unit_id"],
            primary_container_id=data["primary_container_id"],
            responder_container_id=data["responder_container_id"],
            status=data["status"],
        )

    def get_unit_status(self, unit_id: str) -> UnitProcessStatus:
        data = self._request("GET", f"/units/{unit_id}/status", timeout=10)
        return UnitProcessStatus(
            unit_id=data["unit_id"],
            primary_running=data["primary_running"],
            responder_running=data["responder_running"],
            primary_status=data["primary_status"],
            responder_status=data["responder_status"],
        )

    def stop_unit(self, unit_id: str) -> None:
        self._request("POST", f"/units/{unit_id}/stop")

    def _request(self, method: str, path: str, timeout: Optional[int] = None, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = requests.request(method, url, timeout=timeout or self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise RuntimeAgentError(f"{method} {path} timed out after {timeout or self.timeout}s") from e
        except requests.exceptions.ConnectionError as e:
            raise RuntimeAgentError(f"Cannot connect to runtime agent at {self.base_url}") from e

        if response.status_code != 200:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise RuntimeAgentError(f"{method} {path} failed [{response.status_code}]: {detail}")

        return response.json()
