"""FastAPI / Starlette ASGI middleware that tracks HTTP requests.

Usage::

    from fastapi import FastAPI
    from mixpanel_analytics import MixpanelTracker, MixpanelMiddleware

    app = FastAPI()
    tracker = MixpanelTracker(token="YOUR_PROJECT_TOKEN")
    app.add_middleware(MixpanelMiddleware, tracker=tracker)

    @app.on_event("shutdown")
    async def shutdown():
        await tracker.close()  # drains in-flight tasks, then flushes
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


class MixpanelMiddleware(BaseHTTPMiddleware):
    """Tracks one Mixpanel event per matching request.

    Event properties: ``method``, ``path``, ``status_code``, ``latency_ms``.
    Recording never delays or fails the response.
    """

    def __init__(
        self,
        app: Any,
        tracker: Any,
        event_name: str = "HTTP Request",
        path_prefixes: Optional[Iterable[str]] = None,
        exclude_paths: Iterable[str] = (),
    ) -> None:
        super().__init__(app)
        self.tracker = tracker
        self.event_name = event_name
        self.path_prefixes = tuple(path_prefixes) if path_prefixes else None
        self.exclude_paths = frozenset(exclude_paths)

    def _should_track(self, path: str) -> bool:
        if path in self.exclude_paths:
            return False
        if self.path_prefixes is None:
            return True
        return any(path.startswith(p) for p in self.path_prefixes)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path

        # Fast path: untracked requests
        if not self._should_track(path):
            return await call_next(request)

        start = time.monotonic()
        response = await call_next(request)
        latency_ms = round((time.monotonic() - start) * 1000, 2)

        # Fire-and-forget; tracker.close() drains registered tasks.
        try:
            task = asyncio.create_task(
                self.tracker.track_event(
                    self.event_name,
                    {
                        "method": request.method,
                        "path": path,
                        "status_code": response.status_code,
                        "latency_ms": latency_ms,
                    },
                )
            )
            self.tracker.register_pending_task(task)
        except Exception:
            logger.exception("Mixpanel request tracking failed")

        return response
