"""Search and reindex service."""

import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
import structlog

from .. import __version__
from ..bootstrap import IndexServices, build_services
from ..common.config import ServiceConfig
from ..common.logging import configure_logging
from .routes import router as api_router

SERVICE_NAME = "talent-index"

logger = structlog.get_logger("api")


def create_app(services: Optional[IndexServices] = None) -> FastAPI:
    """Create the FastAPI application.

    ``services`` replaces the configured component graph (used by tests).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is None:
            config = ServiceConfig()
            configure_logging(SERVICE_NAME, config.talent_log_level, config.talent_log_format)
            app.state.services = build_services(config, SERVICE_NAME)
        else:
            app.state.services = services
        logger.info("Search service started")

        yield

        logger.info("Shutting down search service")
        await app.state.services.close()

    app = FastAPI(
        title="Talent Index",
        description="Vector, lexical, and hybrid search with incremental reindexing",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix="/api/v1")

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Collect metrics for HTTP requests."""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        state_services = getattr(request.app.state, "services", None)
        if state_services is not None:
            route = request.scope.get("route")
            state_services.metrics.record_http_request(
                method=request.method,
                endpoint=getattr(route, "path", request.url.path),
                status=response.status_code,
                duration=duration,
            )
        response.headers["X-Process-Time"] = str(duration)
        return response

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        healthy = await request.app.state.services.store.health_check()
        body = {
            "status": "healthy" if healthy else "unhealthy",
            "service": SERVICE_NAME,
            "pending_reindexes": request.app.state.services.orchestrator.pending_count,
            "embedding_circuit": request.app.state.services.embedding_client.circuit_breaker.state.value,
        }
        return JSONResponse(status_code=200 if healthy else 503, content=body)

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint."""
        return Response(
            content=request.app.state.services.metrics.get_metrics(),
            media_type="text/plain",
        )

    @app.get("/")
    async def root():
        return {
            "service": SERVICE_NAME,
            "version": __version__,
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "search": "/api/v1/search",
                "reindex": "/api/v1/reindex/{entity_type}/{record_id}",
                "batch": "/api/v1/reindex/batch",
                "stats": "/api/v1/index/stats/{entity_type}",
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    config = ServiceConfig()
    uvicorn.run(
        "talent_index.api.main:app",
        host="0.0.0.0",
        port=config.talent_search_port,
        log_level=config.talent_log_level.lower(),
    )
