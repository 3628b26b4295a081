import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from services.exceptions import (
    AllocationDomainError,
    AlreadyAssignedError,
    ConflictRetryableError,
    DuplicateError,
    InvalidPortDataError,
    NotFoundError,
    OrderStateError,
    PersistenceError,
    PortStateError,
    SubscriptionStateError,
)

logger = logging.getLogger(__name__)

# Most specific first; the first match wins
STATUS_CODES = (
    (NotFoundError, 404),
    (AlreadyAssignedError, 409),
    (DuplicateError, 409),
    (PortStateError, 409),
    (SubscriptionStateError, 409),
    (OrderStateError, 409),
    (ConflictRetryableError, 409),
    (InvalidPortDataError, 422),
    (PersistenceError, 503),
)


def status_code_for(exc: AllocationDomainError) -> int:
    for error_class, status_code in STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return 400


async def domain_exception_handler(request: Request, exc: AllocationDomainError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"Request failed: {exc.message}", extra={'path': request.url.path, 'code': exc.code})

    content = {
        "error": exc.code,
        "message": exc.message,
    }
    if isinstance(exc, ConflictRetryableError):
        content["retryable"] = True
    return JSONResponse(status_code=status_code, content=content)
