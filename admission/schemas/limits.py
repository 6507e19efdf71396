"""Pydantic schemas describing configured rate limiters."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LimiterInfo(BaseModel):
    """Public view of one preset limiter."""

    name: str = Field(..., description="Preset name (feedback, general, strict).")
    max_requests: int = Field(..., description="Requests admitted per key and window.")
    window_ms: int = Field(..., description="Window length in milliseconds.")
    message: str = Field(..., description="Error text returned when the limit is hit.")


class LimiterList(BaseModel):
    backend: str = Field(..., description="Counter store in use: 'memory' or 'redis'.")
    limiters: list[LimiterInfo] = Field(default_factory=list)
