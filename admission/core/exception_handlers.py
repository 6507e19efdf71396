"""Global exception handlers for consistent error responses.

Design:
- RateLimitExceededError → 429 in the admission response format
- Other AppError subclasses → 400 with ``{"error": {code, message, ...}}``
- Request validation and HTTPException keep FastAPI's default bodies
- Errors raised after admission keep the ``X-RateLimit-*`` headers
- Unexpected Exception → generic 500 (safety net)
"""

import logging

from fastapi import Request
from fastapi.exception_handlers import http_exception_handler, request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from admission.core.errors import AppError, RateLimitExceededError
from admission.core.logging import get_request_id
from admission.core.rate_limit import add_rate_limit_headers, build_rate_limit_response, decision_for

logger = logging.getLogger(__name__)


def _with_rate_limit_headers(request: Request, response: Response) -> Response:
    # The request was counted before the route failed; clients still see their quota
    decision = decision_for(request)
    if decision is not None:
        add_rate_limit_headers(response, decision)
    return response


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Turn a rejected admission decision into the 429 response.

    The body keeps the flat ``{error, retryAfter, limit, remaining,
    resetTime}`` shape that existing clients and reverse proxies expect,
    instead of the nested error envelope used for other AppErrors.
    """
    if exc.decision is None:
        return await app_error_handler(request, exc)

    logger.info(
        "rate_limit.rejected_response",
        extra={
            "limiter": (exc.details or {}).get("limiter"),
            "request_path": request.url.path,
            "retry_after_s": exc.decision.retry_after_seconds,
        },
    )
    return build_rate_limit_response(exc.decision, exc.message)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with status 400 (429 for rate limit errors without a
        decision) and error details.
    """
    status_code = 429 if isinstance(exc, RateLimitExceededError) else 400

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    response = JSONResponse(status_code=status_code, content={"error": error_content})
    return _with_rate_limit_headers(request, response)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    """Default 422 response, keeping the headers of an admitted request."""
    response = await request_validation_exception_handler(request, exc)
    return _with_rate_limit_headers(request, response)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Default HTTPException response, keeping the headers of an admitted request."""
    response = await http_exception_handler(request, exc)
    return _with_rate_limit_headers(request, response)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Logs the failure for debugging while returning a generic message, so no
    stack traces or store connection details reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Starlette resolves handlers by the exception's MRO, so the specific
    RateLimitExceededError handler wins over the AppError one.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(RequestValidationError)(validation_error_handler)
    app.exception_handler(StarletteHTTPException)(http_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
