from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from admission.core.rate_limit import get_limiter_registry, rate_limited
from admission.schemas.limits import LimiterInfo, LimiterList
from admission.services.limiter_registry import GENERAL, LIMITER_PRESETS, STRICT, LimiterRegistry

router = APIRouter(tags=["Rate limits"])


def _info(name: str) -> LimiterInfo:
    config = LIMITER_PRESETS[name]
    return LimiterInfo(
        name=name,
        max_requests=config.max_requests,
        window_ms=config.window_ms,
        message=config.message,
    )


@router.get(
    "/rate-limits",
    response_model=LimiterList,
    dependencies=[Depends(rate_limited(GENERAL))],
)
def list_rate_limits(
    registry: Annotated[LimiterRegistry, Depends(get_limiter_registry)],
) -> LimiterList:
    """List the preset limiters and the counter store backing them."""

    return LimiterList(
        backend=registry.store.backend_name,
        limiters=[_info(name) for name in sorted(LIMITER_PRESETS)],
    )


@router.get(
    "/rate-limits/{name}",
    response_model=LimiterInfo,
    dependencies=[Depends(rate_limited(STRICT))],
)
def get_rate_limit(name: str) -> LimiterInfo:
    """Describe one preset limiter.

    Raises:
        HTTPException: 404 if no preset has this name.
    """

    if name not in LIMITER_PRESETS:
        raise HTTPException(status_code=404, detail=f"Unknown rate limiter: {name}")
    return _info(name)
