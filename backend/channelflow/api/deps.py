"""
API dependencies - shared across all routes.
"""
from fastapi import HTTPException, Request, status

from channelflow.bootstrap import Services
from channelflow.exceptions import (
    ChannelflowError,
    ConfigurationError,
    InvalidDefinitionError,
    NotFoundError,
    StoreConflictError,
)

_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidDefinitionError, status.HTTP_400_BAD_REQUEST),
    (StoreConflictError, status.HTTP_409_CONFLICT),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def get_services(request: Request) -> Services:
    return request.app.state.services


def http_error(error: ChannelflowError) -> HTTPException:
    """Translate a core exception into the matching HTTPException."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)
