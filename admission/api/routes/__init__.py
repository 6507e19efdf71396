from __future__ import annotations

from admission.api.routes.feedback import router as feedback_router
from admission.api.routes.health import router as health_router
from admission.api.routes.limits import router as limits_router

__all__ = ["feedback_router", "health_router", "limits_router"]
