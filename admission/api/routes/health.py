from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Not rate limited. Reports which counter store the limiters use and whether
    counting currently happens in process memory because that store failed,
    so a silent fallback from Redis is visible to monitoring.

    Returns:
        dict: ``{"status": "ok" | "degraded", "counter_store": "memory" |
            "redis", "degraded": bool}``.
    """

    registry = getattr(request.app.state, "limiter_registry", None)
    if registry is None:
        return {"status": "ok", "counter_store": "uninitialized", "degraded": False}

    degraded = registry.degraded
    return {
        "status": "degraded" if degraded else "ok",
        "counter_store": registry.store.backend_name,
        "degraded": degraded,
    }
