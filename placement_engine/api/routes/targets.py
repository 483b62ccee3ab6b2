# placement_engine/api/routes/targets.py
"""Exposure layer inspection."""

from fastapi import APIRouter, Depends

from placement_engine.api.container import get_services

router = APIRouter(prefix="/targets", tags=["targets"])


@router.get("")
def get_targets(services=Depends(get_services)):
    """Front door, listeners and target group members with their health."""
    return services.exposure.snapshot()
