"""Application factory for FastAPI app.

Centralizes app construction (middleware, handlers, routers) and ties the
limiter registry to the application lifespan: it is built on startup,
exposed on ``app.state.limiter_registry`` and closed on shutdown so the
counter store's sweep thread and Redis connections are released.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from admission.api.routes import feedback_router, health_router, limits_router
from admission.core.config import settings
from admission.core.exception_handlers import setup_exception_handlers
from admission.core.logging import configure_logging
from admission.core.middleware import request_id_middleware
from admission.services.limiter_registry import LimiterRegistry, build_limiter_registry

logger = logging.getLogger(__name__)


def create_app(*, limiter_registry: LimiterRegistry | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        limiter_registry: Registry to use instead of building one from
            settings (tests inject one with a controlled clock).

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # The Redis reachability probe blocks for up to the configured timeout
        registry = limiter_registry or await run_in_threadpool(
            build_limiter_registry, settings.rate_limit
        )
        app.state.limiter_registry = registry
        logger.info("app.startup", extra={"backend": registry.store.backend_name})
        try:
            yield
        finally:
            registry.close()
            logger.info("app.shutdown")

    app = FastAPI(
        title="Admission Control API",
        description=(
            "Public endpoints protected by fixed-window rate limits. Rejected "
            "requests receive HTTP 429 with X-RateLimit-* and Retry-After headers."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(feedback_router, prefix="/v1")
    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    return app
