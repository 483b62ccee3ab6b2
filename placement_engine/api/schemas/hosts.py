from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class RegisterHostRequest(BaseModel):
    """Sent by a runtime agent when its host boots."""
    host_id: str = Field(..., min_length=1, max_length=255)
    host_name: Optional[str] = None
    internal_ip: str
    public_ip: Optional[str] = None
    agent_url: str
    instance_type: str = "t3.large"
    total_memory: int = Field(..., gt=0)
    total_storage: int = Field(..., gt=0)
    labels: Dict[str, str] = Field(default_factory=dict)


class HeartbeatRequest(BaseModel):
    health_status: str = "HEALTHY"


class HostFailedRequest(BaseModel):
    reason: str = "reported failed"


class HostResponse(BaseModel):
    host_id: str
    host_name: str
    internal_ip: str
    public_ip: Optional[str]
    agent_url: Optional[str]
    instance_type: str
    status: str
    health_status: str
    available_memory: int
    available_storage: int
    last_heartbeat_at: Optional[datetime]
