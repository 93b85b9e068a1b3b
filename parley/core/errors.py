import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ParleyError(Exception):
    """Recoverable error whose message is safe to show to the user."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ParleyError):
    status_code = status.HTTP_404_NOT_FOUND


class DuplicateError(ParleyError):
    status_code = status.HTTP_409_CONFLICT


class ValidationError(ParleyError):
    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedError(ParleyError):
    status_code = status.HTTP_401_UNAUTHORIZED


class TransientError(ParleyError):
    """Store or upstream API unreachable or failing."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


async def parley_error_handler(request: Request, exc: ParleyError):
    logger.info(
        f"request_failed path={request.url.path} "
        f"error={type(exc).__name__} detail={exc.message}"
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
