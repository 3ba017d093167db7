"""Error taxonomy for the chat service and the FastAPI handlers that render it."""
import logging
import math
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ChatServiceError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnauthorizedError(ChatServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED


class ValidationError(ChatServiceError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ChatServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class OwnershipError(NotFoundError):
    """Thread exists but belongs to someone else. Reported as 404 so existence is not leaked."""


class RateLimitError(ChatServiceError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, reset_time: datetime, message: str = "Rate limit exceeded"):
        super().__init__(message)
        self.reset_time = reset_time

    @property
    def retry_after(self) -> int:
        seconds = (self.reset_time - datetime.now(timezone.utc)).total_seconds()
        return max(1, math.ceil(seconds))


class PersistenceError(ChatServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class ProviderError(ChatServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class TitleGenerationError(ChatServiceError):
    """Raised inside the title generator; always recovered before reaching a client."""


def _first_validation_problem(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request format"
    first = errors[0]
    location = [str(part) for part in first.get("loc", ()) if part != "body"]
    field = ".".join(location) or "body"
    return f"{field}: {first.get('msg', 'invalid value')}"


def register_exception_handlers(app: FastAPI) -> None:
    """Install JSON error handlers; internal details are logged, never returned."""

    @app.exception_handler(RateLimitError)
    async def rate_limit_handler(request: Request, exc: RateLimitError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "resetTime": exc.reset_time.isoformat()},
            headers={
                "Retry-After": str(exc.retry_after),
                "X-RateLimit-Reset": exc.reset_time.isoformat(),
            },
        )

    @app.exception_handler(ChatServiceError)
    async def chat_error_handler(request: Request, exc: ChatServiceError) -> JSONResponse:
        headers: Optional[dict] = None
        if isinstance(exc, UnauthorizedError):
            headers = {"WWW-Authenticate": "Bearer"}
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        problem = _first_validation_problem(exc)
        logger.warning("Request validation failed", extra={"path": request.url.path, "problem": problem})
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": f"Validation failed: {problem}"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )
