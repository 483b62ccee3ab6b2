# runtime_agent/server.py
"""
Runtime Agent - Runs on capacity pool hosts.
Starts, inspects and stops the Workload Unit's containers.
"""

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
import docker
import logging
import os
import socket
import threading

import requests
import uvicorn

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Runtime Agent",
    description="Workload unit runtime agent for the placement engine",
    version="1.0.0"
)

VOLUME_ROOT = "/mnt/volumes"

# Docker client (connects to local Docker daemon)
try:
    docker_client = docker.from_env()
    logger.info("✅ Connected to Docker daemon")
except docker.errors.DockerException as e:
    logger.error(f"❌ Failed to connect to Docker: {e}")
    docker_client = None


# ============================================
# REQUEST/RESPONSE MODELS
# ============================================

class PortSpec(BaseModel):
    container_port: int
    protocol: str = Field(..., description="UDP or TCP")


class VolumeMount(BaseModel):
    volume_id: str
    mount_path: str


class PrimarySpec(BaseModel):
    """Game server container."""
    image: str
    memory_limit_mib: int = Field(..., gt=0)
    ports: list[PortSpec] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)
    volume: Optional[VolumeMount] = None
    log_stream_prefix: str = ""


class ResponderSpec(BaseModel):
    """Health responder container."""
    image: str
    memory_limit_mib: int = Field(..., gt=0)
    port: int
    essential: bool = True
    log_stream_prefix: str = ""


class DeployUnitRequest(BaseModel):
    unit_id: str
    primary: PrimarySpec
    responder: ResponderSpec


class DeployUnitResponse(BaseModel):
    unit_id: str
    primary_container_id: str
    responder_container_id: str
    status: str


class UnitStatusResponse(BaseModel):
    unit_id: str
    primary_running: bool
    responder_running: bool
    primary_status: str
    responder_status: str


class HostInfoResponse(BaseModel):
    docker_version: str
    containers_running: int
    memory_total: int  # bytes
    cpu_count: int


def _primary_name(unit_id: str) -> str:
    return f"{unit_id}-primary"


def _responder_name(unit_id: str) -> str:
    return f"{unit_id}-health"


def _require_docker():
    if docker_client is None:
        raise HTTPException(status_code=503, detail="Docker not available")
    return docker_client


def _remove_containers(unit_id: str, containers) -> None:
    for container in containers:
        try:
            container.stop(timeout=10)
            container.remove()
            logger.info(f"[{unit_id}] Removed {container.id[:12]} after failed deploy")
        except docker.errors.APIError as e:
            logger.error(f"[{unit_id}] Could not remove {container.id[:12]}: {e}")


# ============================================
# ENDPOINTS
# ============================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    _require_docker()
    return {"status": "healthy", "docker_connected": True}


@app.get("/info", response_model=HostInfoResponse)
async def get_host_info():
    """Get host information."""
    client = _require_docker()
    try:
        info = client.info()
    except docker.errors.APIError as e:
        logger.error(f"Failed to get host info: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return HostInfoResponse(
        docker_version=info.get("ServerVersion", "unknown"),
        containers_running=info.get("ContainersRunning", 0),
        memory_total=info.get("MemTotal", 0),
        cpu_count=info.get("NCPU", 0),
    )


@app.post("/units", response_model=DeployUnitResponse)
async def deploy_unit(request: DeployUnitRequest):
    """
    Deploy a Workload Unit.

    Steps:
    1. Pull both images
    2. Start the health responder (host network)
    3. Start the primary process (host network, volume mount)

    If a container fails to start, the ones already started are removed so
    the responder does not keep the probe port bound.
    """
    client = _require_docker()
    unit_id = request.unit_id
    started = []

    try:
        for image in (request.responder.image, request.primary.image):
            logger.info(f"[{unit_id}] Pulling image: {image}")
            try:
                client.images.pull(image)
            except docker.errors.ImageNotFound:
                raise HTTPException(status_code=404, detail=f"Image not found: {image}")

        labels = {"managed_by": "placement_engine", "unit_id": unit_id}

        responder = client.containers.run(
            request.responder.image,
            name=_responder_name(unit_id),
            detach=True,
            network_mode="host",
            mem_limit=f"{request.responder.memory_limit_mib}m",
            environment={"HEALTH_PORT": str(request.responder.port)},
            labels={**labels, "role": "health", "log_stream_prefix": request.responder.log_stream_prefix},
        )
        started.append(responder)
        logger.info(f"[{unit_id}] ✅ Health responder started: {responder.id[:12]}")

        volumes = {}
        if request.primary.volume:
            host_path = f"{VOLUME_ROOT}/{request.primary.volume.volume_id}"
            volumes[host_path] = {"bind": request.primary.volume.mount_path, "mode": "rw"}

        primary = client.containers.run(
            request.primary.image,
            name=_primary_name(unit_id),
            detach=True,
            network_mode="host",
            mem_limit=f"{request.primary.memory_limit_mib}m",
            environment=request.primary.environment,
            volumes=volumes,
            labels={**labels, "role": "primary", "log_stream_prefix": request.primary.log_stream_prefix},
        )
        started.append(primary)
        logger.info(f"[{unit_id}] ✅ Primary process started: {primary.id[:12]}")

        return DeployUnitResponse(
            unit_id=unit_id,
            primary_container_id=primary.id,
            responder_container_id=responder.id,
            status="running",
        )

    except docker.errors.APIError as e:
        logger.error(f"[{unit_id}] Docker API error: {e}")
        _remove_containers(unit_id, started)
        raise HTTPException(status_code=500, detail=f"Docker error: {str(e)}")


@app.get("/units/{unit_id}/status", response_model=UnitStatusResponse)
async def get_unit_status(unit_id: str):
    """Get running state of both containers."""
    client = _require_docker()

    statuses = {}
    for role, name in (("primary", _primary_name(unit_id)), ("responder", _responder_name(unit_id))):
        try:
            container = client.containers.get(name)
            statuses[role] = container.status
        except docker.errors.NotFound:
            statuses[role] = "missing"

    if statuses["primary"] == "missing" and statuses["responder"] == "missing":
        raise HTTPException(status_code=404, detail="Unit not found")

    return UnitStatusResponse(
        unit_id=unit_id,
        primary_running=statuses["primary"] == "running",
        responder_running=statuses["responder"] == "running",
        primary_status=statuses["primary"],
        responder_status=statuses["responder"],
    )


@app.post("/units/{unit_id}/stop")
async def stop_unit(unit_id: str):
    """Stop and remove both containers."""
    client = _require_docker()

    stopped = []
    for name in (_primary_name(unit_id), _responder_name(unit_id)):
        try:
            container = client.containers.get(name)
        except docker.errors.NotFound:
            continue
        container.stop(timeout=10)
        container.remove()
        stopped.append(name)

    logger.info(f"[{unit_id}] Stopped {stopped}")
    return {"status": "stopped", "unit_id": unit_id, "containers": stopped}


# ============================================
# CONTROLLER REGISTRATION
# ============================================

CONTROLLER_URL = os.getenv("CONTROLLER_URL")
AGENT_PORT = int(os.getenv("AGENT_PORT", "9000"))
HOST_ID = os.getenv("HOST_ID", socket.gethostname())
HEARTBEAT_INTERVAL = float(os.getenv("HEARTBEAT_INTERVAL", "30"))


def registration_payload() -> Dict[str, Any]:
    """Describe this host for the controller's capacity pool."""
    internal_ip = os.getenv("HOST_INTERNAL_IP") or socket.gethostbyname(socket.gethostname())
    memory_mib = int(os.getenv("HOST_MEMORY_MIB", "0"))
    if not memory_mib and docker_client is not None:
        memory_mib = docker_client.info().get("MemTotal", 0) // (1024 * 1024)

    return {
        "host_id": HOST_ID,
        "host_name": socket.gethostname(),
        "internal_ip": internal_ip,
        "public_ip": os.getenv("HOST_PUBLIC_IP"),
        "agent_url": os.getenv("AGENT_URL") or f"http://{internal_ip}:{AGENT_PORT}",
        "instance_type": os.getenv("HOST_INSTANCE_TYPE", "t3.large"),
        "total_memory": memory_mib,
        "total_storage": int(os.getenv("HOST_DISK_GIB", "60")),
    }


def register_with_controller(controller_url: str) -> bool:
    try:
        response = requests.post(
            f"{controller_url}/hosts/register", json=registration_payload(), timeout=10
        )
    except requests.exceptions.RequestException as e:
        logger.warning(f"Registration with {controller_url} failed: {e}")
        return False

    if response.status_code != 200:
        logger.warning(f"Registration rejected [{response.status_code}]: {response.text}")
        return False

    logger.info(f"✅ Registered {HOST_ID} with controller {controller_url}")
    return True


def heartbeat_loop(controller_url: str, stop_event: threading.Event) -> None:
    """Register, then heartbeat until stopped; re-register when forgotten."""
    registered = False
    while not stop_event.is_set():
        if not registered:
            registered = register_with_controller(controller_url)
        else:
            health = "HEALTHY" if docker_client is not None else "UNHEALTHY"
            try:
                response = requests.post(
                    f"{controller_url}/hosts/{HOST_ID}/heartbeat",
                    json={"health_status": health},
                    timeout=5,
                )
                if response.status_code in (404, 410):
                    logger.info("Controller no longer tracks this host, registering again")
                    registered = False
            except requests.exceptions.RequestException as e:
                logger.warning(f"Heartbeat failed: {e}")

        stop_event.wait(HEARTBEAT_INTERVAL)


def main():
    stop_event = threading.Event()
    if CONTROLLER_URL:
        threading.Thread(
            target=heartbeat_loop, args=(CONTROLLER_URL, stop_event), name="heartbeat", daemon=True
        ).start()
    else:
        logger.warning("CONTROLLER_URL not set, host will not register itself")

    try:
        uvicorn.run(app, host="0.0.0.0", port=AGENT_PORT)
    finally:
        stop_event.set()


if __name__ == "__main__":
    main()
