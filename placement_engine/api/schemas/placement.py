from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class PlacementStatusResponse(BaseModel):
    state: str
    generation: int
    last_error: Optional[str]
    consecutive_failures: int
    placement: Optional[Dict[str, Any]]
    unit_id: Optional[str]
    volume_id: Optional[str]
    blocked_reason: Optional[str]
    published_name: str
    published_address: Optional[str]
    history: List[Dict[str, Any]]


class ReplaceRequest(BaseModel):
    reason: str = "operator requested replacement"
