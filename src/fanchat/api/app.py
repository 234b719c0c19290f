"""FastAPI application factory: local HTTP/SSE bridge to the messaging core.

The bridge owns one MessagingService per login; it is built lazily on the
first request that needs it and discarded on logout.
"""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from core import metrics
from core.config import get_config
from core.log import configure_logging
from core.messaging import MessagingService
from fanchat.api.routes.messaging import router as messaging_router

_log = logging.getLogger("fanchat.api")

ServiceFactory = Callable[[], MessagingService]


def _default_service() -> MessagingService:
    return MessagingService.from_config(get_config().messaging)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    try:
        configure_logging(get_config().logging)
    except Exception as e:  # noqa: BLE001
        configure_logging()
        _log.warning("logging config unavailable, using defaults: %s", e)
    yield
    svc = getattr(app.state, "messaging", None)
    if svc is not None:
        await svc.shutdown()
        app.state.messaging = None


def create_app(service_factory: ServiceFactory | None = None) -> FastAPI:
    app = FastAPI(
        title="fanchat bridge",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        lifespan=_lifespan,
    )
    app.state.service_factory = service_factory or _default_service
    app.state.messaging = None

    # Dev CORS (UI on :3000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():  # noqa: D401
        svc = app.state.messaging
        return {
            "status": "ok",
            "connection": (
                svc.connection.state.value if svc is not None else None
            ),
        }

    @app.get("/config")
    def config():  # noqa: D401
        cfg = get_config()
        msg = cfg.messaging
        return {
            "schema_version": cfg.schema_version,
            "socket_url": msg.socket.url,
            "api_base_url": msg.api.base_url,
            "message_max_length": msg.message_max_length,
            "recent_chats_ttl_s": msg.recent_chats.ttl_s,
            "toast_duration_s": msg.notifications.toast_duration_s,
            "messages_route": msg.notifications.messages_route,
        }

    @app.get("/metrics")
    def metrics_snapshot():  # noqa: D401
        if not get_config().metrics.expose_endpoint:
            raise HTTPException(status_code=404, detail="metrics-disabled")
        return metrics.snapshot()

    app.include_router(messaging_router)

    @app.middleware("http")
    async def _metrics_mw(request: Request, call_next):  # noqa: D401
        start = time.time()
        labels = {"route": request.url.path, "method": request.method}
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            duration_ms = (time.time() - start) * 1000.0
            metrics.inc("api_request_total", labels)
            metrics.observe("api_request_latency_ms", duration_ms, labels)
            if status >= 400:
                metrics.inc(
                    "api_request_errors_total", labels | {"status": status}
                )

    return app


app = create_app()


def main() -> None:  # pragma: no cover
    import uvicorn

    uvicorn.run(
        "fanchat.api.app:app", host="127.0.0.1", port=8000, reload=False
    )


if __name__ == "__main__":  # pragma: no cover
    main()
