"""Admission control for FastAPI routes.

This module wires the limiter registry into the HTTP layer and renders
limiter decisions as HTTP responses.

Contract:
- Rejected requests get HTTP 429 with a JSON body
  ``{error, retryAfter, limit, remaining, resetTime}`` and the
  ``X-RateLimit-*`` / ``Retry-After`` headers.
- Admitted requests pass through, decorated with the ``X-RateLimit-*``
  headers only.

Usage:
    @router.post("/feedback", dependencies=[Depends(rate_limited("feedback"))])
"""

from __future__ import annotations

import logging
from typing import Annotated, Callable

from fastapi import Depends, Request, Response, status
from fastapi.responses import JSONResponse

from admission.core.config import settings
from admission.core.errors import RateLimitExceededError
from admission.services.limiter_registry import LimiterRegistry
from admission.services.rate_limiter import Decision

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_MESSAGE = "Rate limit exceeded"


def rate_limit_headers(decision: Decision) -> dict[str, str]:
    """Build the informative headers for a decision.

    ``X-RateLimit-Reset`` carries the window's reset time in epoch
    milliseconds. ``Retry-After`` (seconds) is present only when blocked.
    """
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_time_ms),
    }
    if decision.retry_after_seconds is not None:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


def build_rate_limit_response(decision: Decision, message: str | None = None) -> JSONResponse:
    """Render a rejected decision as the standard 429 response.

    Args:
        decision: Decision returned by ``RateLimiter.check_limit``.
        message: Human-readable error text; defaults to "Rate limit exceeded".

    Returns:
        JSONResponse with status 429, error body and rate limit headers.
    """
    body: dict[str, object] = {"error": message or DEFAULT_REJECTION_MESSAGE}
    if decision.retry_after_seconds is not None:
        body["retryAfter"] = decision.retry_after_seconds
    body["limit"] = decision.limit
    body["remaining"] = decision.remaining
    body["resetTime"] = decision.reset_time_iso

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=body,
        headers=rate_limit_headers(decision),
    )


def add_rate_limit_headers(response: Response, decision: Decision) -> Response:
    """Decorate an admitted response with the ``X-RateLimit-*`` headers."""
    for name, value in rate_limit_headers(decision).items():
        if name != "Retry-After":
            response.headers[name] = value
    return response


def decision_for(request: Request) -> Decision | None:
    """Return the decision recorded for this request by ``rate_limited``."""
    return getattr(request.state, "rate_limit_decision", None)


def get_limiter_registry(request: Request) -> LimiterRegistry:
    """Return the registry created by the application lifespan."""
    return request.app.state.limiter_registry


def rate_limited(name: str) -> Callable[..., Decision | None]:
    """Create a dependency enforcing the preset limiter ``name``.

    Args:
        name: Preset name from ``LIMITER_PRESETS`` (feedback, general, strict).

    Returns:
        FastAPI dependency returning the Decision (None when disabled).
    """

    # Plain def: FastAPI runs it in the threadpool, where a blocking Redis
    # call cannot stall the event loop.
    def enforce_rate_limit(
        request: Request,
        response: Response,
        registry: Annotated[LimiterRegistry, Depends(get_limiter_registry)],
    ) -> Decision | None:
        """Count the request against the limiter and reject it when over limit.

        Raises:
            RateLimitExceededError: When the limiter rejects the request.
        """
        if not settings.app.rate_limit_enabled:
            return None

        limiter = registry.preset(name)
        decision = limiter.check_limit(request)
        # Error handlers decorate 400/422 responses from this
        request.state.rate_limit_decision = decision

        if not decision.allowed:
            raise RateLimitExceededError(
                code="rate_limit_exceeded",
                message=limiter.config.message,
                details={"limiter": name},
                decision=decision,
            )

        add_rate_limit_headers(response, decision)
        return decision

    return enforce_rate_limit
