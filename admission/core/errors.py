"""Application-level exception types.

This module defines domain errors raised by routes and dependencies, enabling
consistent error handling, logging, and API responses.

Counter store outages are deliberately absent: they are recovered inside the
store adapters and never reach the HTTP layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from admission.services.rate_limiter import Decision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    limiter: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised by the admission dependency when a limiter rejects a request.

    The handler renders it as the standard 429 response, so the decision
    travels with the exception.
    """

    decision: Decision | None = field(default=None, kw_only=True)
