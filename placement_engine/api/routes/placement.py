# placement_engine/api/routes/placement.py
"""Placement API routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from placement_engine.api.container import get_services, to_http_error
from placement_engine.api.schemas.placement import PlacementStatusResponse, ReplaceRequest
from placement_engine.core.errors import PlacementError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/placement", tags=["placement"])


def _status(services) -> PlacementStatusResponse:
    status = services.scheduler.status()
    return PlacementStatusResponse(
        **status,
        blocked_reason=services.controller.blocked_reason,
        published_name=services.publisher.name,
        published_address=services.publisher.published_address,
        history=[p.to_dict() for p in services.repository.list_history(limit=10)],
    )


@router.get("", response_model=PlacementStatusResponse)
def get_placement(services=Depends(get_services)):
    """Scheduler state, the active placement and recent history."""
    return _status(services)


@router.post("/deploy", response_model=PlacementStatusResponse)
def deploy(services=Depends(get_services)):
    """
    Place the Workload Unit now instead of waiting for the next cycle.

    No-op when a placement already exists.
    """
    try:
        services.scheduler.deploy()
    except PlacementError as e:
        raise to_http_error(e)
    return _status(services)


@router.post("/replace", response_model=PlacementStatusResponse)
def replace(request: ReplaceRequest = ReplaceRequest(), services=Depends(get_services)):
    """Tear the current placement down and place the unit again."""
    if services.scheduler.current_placement is None:
        raise HTTPException(status_code=409, detail="Nothing is placed")

    try:
        services.scheduler.handle_unit_failure(request.reason)
    except PlacementError as e:
        raise to_http_error(e)
    return _status(services)


@router.delete("", response_model=PlacementStatusResponse)
def deprovision(delete_volume: bool = False, services=Depends(get_services)):
    """Stop the unit; the volume is deleted only with ``delete_volume=true``."""
    try:
        services.scheduler.deprovision(delete_volume=delete_volume)
    except PlacementError as e:
        raise to_http_error(e)
    logger.info(f"[api] placement deprovisioned (delete_volume={delete_volume})")
    return _status(services)
