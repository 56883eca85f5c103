from __future__ import annotations

from quota_gate.api.routes.health import router as health_router
from quota_gate.api.routes.ping import router as ping_router

__all__ = ["health_router", "ping_router"]
