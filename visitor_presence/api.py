#!/usr/bin/env python3
"""
Visitor Presence HTTP API
=========================

- POST /api/metrics         record a pageview (204)
- GET  /api/active-visitors {"count": int | null}
- GET  /api/health          Redis connectivity (200 / 503)
- GET  /metrics             Prometheus exposition

Run:
    REDIS_URL=redis://localhost:6379 python -m visitor_presence.api
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
import structlog
import uvicorn

from .config import Settings, load_settings
from .logging_config import configure_logging
from .metrics import setup_metrics_endpoint
from .store import EphemeralStore
from .tracking import Pageview, PageviewSink, PageviewTracker

logger = structlog.get_logger(__name__)

FALLBACK_IP = "127.0.0.1"


class PageviewPayload(BaseModel):
    """Tracking script payload. Unknown fields are passed through to the sink."""

    model_config = ConfigDict(extra="allow")

    path: str
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    document_referrer: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    utm_term: Optional[str] = None
    added_iso: Optional[datetime] = None


class ActiveVisitorsResponse(BaseModel):
    count: Optional[int] = None


def extract_client_ip(request: Request) -> str:
    """First x-forwarded-for hop, then x-real-ip, then the socket peer."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return FALLBACK_IP


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[EphemeralStore] = None,
    sink: Optional[PageviewSink] = None,
    clock: Callable[[], float] = time.time
) -> FastAPI:
    """
    Build the FastAPI app.

    The store is created on startup from settings (REDIS_URL is required
    then) and closed on shutdown. Tests pass their own store.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active_settings = settings
        active_store = store
        if active_store is None:
            active_settings = active_settings or load_settings()
            active_store = EphemeralStore.from_settings(active_settings)

        hash_secret = active_settings.hash_secret if active_settings else ""
        app.state.store = active_store
        app.state.tracker = PageviewTracker.from_store(
            active_store, hash_secret=hash_secret, sink=sink, clock=clock
        )
        logger.info("visitor_presence_api_started")

        try:
            yield
        finally:
            await active_store.close()
            logger.info("visitor_presence_api_stopped")

    app = FastAPI(
        title="Visitor Presence API",
        description="Unique visitors, live presence and sessions",
        version="1.0.0",
        lifespan=lifespan
    )

    @app.post("/api/metrics", status_code=204)
    async def track_pageview(payload: PageviewPayload, request: Request):
        """Record a pageview. Presence/session failures do not fail the request."""
        user_agent = payload.user_agent or request.headers.get("user-agent", "")
        pageview = Pageview(
            ip=extract_client_ip(request),
            user_agent=user_agent,
            path=payload.path,
            session_id=payload.session_id,
            referrer=payload.document_referrer,
            utm_params={
                "utm_source": payload.utm_source,
                "utm_medium": payload.utm_medium,
                "utm_campaign": payload.utm_campaign,
                "utm_content": payload.utm_content,
                "utm_term": payload.utm_term,
            },
            added_at=payload.added_iso,
            extra=dict(payload.model_extra or {}),
        )
        await request.app.state.tracker.track(pageview)
        return Response(status_code=204)

    @app.get("/api/active-visitors", response_model=ActiveVisitorsResponse)
    async def active_visitors(request: Request):
        """Visitors active in the last 5 minutes; null when Redis is unavailable."""
        result = await request.app.state.tracker.presence.get_active_count()
        return ActiveVisitorsResponse(count=result.value)

    @app.get("/api/health")
    async def health(request: Request):
        """Health check endpoint."""
        redis_ok = await request.app.state.store.health_check()
        body = {
            "status": "ok" if redis_ok else "degraded",
            "timestamp": datetime.now().isoformat(),
            "checks": {"redis": "ok" if redis_ok else "error"},
        }
        return JSONResponse(body, status_code=200 if redis_ok else 503)

    setup_metrics_endpoint(app)
    return app


def main():
    """Run the API with uvicorn."""
    settings = load_settings()
    configure_logging(settings.log_format, settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
