#placement_engine\api\container.py
from fastapi import HTTPException, Request

from placement_engine.container import PlacementServices
from placement_engine.core.errors import (
    AttachmentConflict,
    CapacityExhausted,
    HostRegistrationError,
    PlacementError,
    PreconditionFailure,
    SecretResolutionFailure,
    WorkloadConfigError,
)

# Most specific first
ERROR_STATUS = (
    (SecretResolutionFailure, 422),
    (WorkloadConfigError, 422),
    (HostRegistrationError, 400),
    (AttachmentConflict, 409),
    (PreconditionFailure, 409),
    (CapacityExhausted, 503),
)


def get_services(request: Request) -> PlacementServices:
    return request.app.state.services


def to_http_error(error: PlacementError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=f"{type(error).__name__}: {error}")
