# placement_engine/api/routes/hosts.py
"""Capacity pool API routes."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from placement_engine.api.container import get_services, to_http_error
from placement_engine.api.schemas.hosts import (
    HeartbeatRequest,
    HostFailedRequest,
    HostResponse,
    RegisterHostRequest,
)
from placement_engine.capacity.models import Host, HostHealthStatus
from placement_engine.capacity.provider import RegisteredHostProvider
from placement_engine.core.errors import PlacementError

router = APIRouter(prefix="/hosts", tags=["hosts"])


def _to_response(host: Host) -> HostResponse:
    return HostResponse(
        host_id=host.host_id,
        host_name=host.host_name,
        internal_ip=host.internal_ip,
        public_ip=host.public_ip,
        agent_url=host.agent_url,
        instance_type=host.instance_type,
        status=host.status.value,
        health_status=host.health_status.value,
        available_memory=host.available_memory,
        available_storage=host.available_storage,
        last_heartbeat_at=host.last_heartbeat_at,
    )


@router.get("", response_model=List[HostResponse])
def list_hosts(services=Depends(get_services)):
    """Hosts currently in the capacity pool."""
    return [_to_response(h) for h in services.pool_service.list_hosts()]


@router.post("/register", response_model=HostResponse)
def register_host(request: RegisterHostRequest, services=Depends(get_services)):
    """
    Register a host.

    Called by the runtime agent on boot. The host joins the pool right away
    if the pool is short of its desired size, otherwise it is kept as a
    standby for the next replacement.
    """
    host = Host(
        host_id=request.host_id,
        host_name=request.host_name or request.host_id,
        internal_ip=request.internal_ip,
        public_ip=request.public_ip,
        agent_url=request.agent_url,
        instance_type=request.instance_type,
        total_memory=request.total_memory,
        total_storage=request.total_storage,
        available_memory=request.total_memory,
        available_storage=request.total_storage,
        labels=request.labels,
    )

    try:
        if isinstance(services.compute, RegisteredHostProvider):
            services.compute.register(host)
            services.pool_service.ensure_capacity()
        else:
            services.pool_service.add_host(host)
    except PlacementError as e:
        raise to_http_error(e)

    return _to_response(services.pool_service.get_host(host.host_id) or host)


@router.post("/{host_id}/heartbeat", response_model=HostResponse)
def heartbeat(host_id: str, request: HeartbeatRequest = HeartbeatRequest(), services=Depends(get_services)):
    try:
        health = HostHealthStatus[request.health_status.upper()]
    except KeyError:
        raise HTTPException(status_code=400, detail=f"Unknown health status {request.health_status}")

    try:
        services.pool_service.report_heartbeat(host_id, health)
    except KeyError:
        raise HTTPException(status_code=404, detail="Host not in pool")

    host = services.pool_service.get_host(host_id)
    if host is None:
        # Reported unhealthy and replaced
        raise HTTPException(status_code=410, detail="Host was replaced")
    return _to_response(host)


@router.post("/{host_id}/failed")
def mark_failed(host_id: str, request: HostFailedRequest = HostFailedRequest(), services=Depends(get_services)):
    """Replace a failed host; the placement follows on the next cycle."""
    if services.pool_service.get_host(host_id) is None:
        raise HTTPException(status_code=404, detail="Host not in pool")

    replacement = services.pool_service.mark_failed(host_id, reason=request.reason)
    return {
        "host_id": host_id,
        "status": "replaced",
        "replacement_host_id": replacement.host_id if replacement else None,
    }
