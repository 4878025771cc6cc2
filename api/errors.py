"""
HTTP error mapping for SupportDesk Chat API.

Every failure leaves the API as `{"success": false, "error": <message>}`.
"""

import logging

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from handoff.errors import HandoffError, InvalidRole, NotFound, TransferRollbackFailed

logger = logging.getLogger(__name__)

# First match wins; HandoffError covers Conflict, CapacityExceeded,
# AlreadyQueued, QueueEmpty and NoStaffAvailable.
STATUS_CODES = [
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidRole, status.HTTP_403_FORBIDDEN),
    (TransferRollbackFailed, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (HandoffError, status.HTTP_409_CONFLICT),
]


def status_for(error: HandoffError) -> int:
    for error_type, code in STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def handoff_error_handler(request: Request, exc: HandoffError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "error": "Invalid request data", "details": jsonable_encoder(exc.errors())},
    )
