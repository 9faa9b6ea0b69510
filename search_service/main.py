"""Search service main application."""

import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from libs.common.config import SearchConfig
from libs.common.logging import configure_logging
from libs.common.metrics import MetricsCollector
from .api.routes import router as api_router
from .runtime import SearchRuntime

logger = structlog.get_logger("search_service")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    config = SearchConfig()
    configure_logging("search-service", config.lit_log_level, config.lit_log_format)
    logger.info("Starting search service", env=config.lit_env)

    app.state.config = config
    app.state.metrics_collector = MetricsCollector("search-service")
    app.state.runtime = SearchRuntime(config, metrics=app.state.metrics_collector)
    await app.state.runtime.initialize()

    logger.info("Search service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down search service")
    await app.state.runtime.cleanup()
    logger.info("Search service shutdown complete")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Literature Search Service",
        description="Semantic, keyword, hybrid and related-article search",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Collect metrics for HTTP requests and add the processing time header."""
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error("Unhandled request error", path=request.url.path, error=str(e))
            status_code = 500
            response = JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "detail": str(e)}
            )

        duration = time.time() - start_time
        response.headers["X-Process-Time"] = str(duration)

        metrics_collector = getattr(request.app.state, "metrics_collector", None)
        if metrics_collector is not None:
            metrics_collector.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status=status_code,
                duration=duration
            )

        return response

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        runtime = getattr(request.app.state, "runtime", None)
        try:
            healthy = runtime is not None and await runtime.health_check()
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "service": "search-service", "error": str(e)}
            )

        if healthy:
            return {"status": "healthy", "service": "search-service"}
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": "search-service"}
        )

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint."""
        metrics_collector = getattr(request.app.state, "metrics_collector", None)
        if metrics_collector is None:
            return Response(content="# No metrics available\n", media_type="text/plain")
        return Response(content=metrics_collector.get_metrics(), media_type="text/plain")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "search-service",
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "search": "/api/v1/search",
                "related": "/api/v1/articles/{article_id}/related",
                "refresh": "/api/v1/related/refresh",
                "stats": "/api/v1/related/stats",
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    config = SearchConfig()
    uvicorn.run(
        "search_service.main:app",
        host="0.0.0.0",
        port=config.lit_search_port,
        log_level=config.lit_log_level.lower(),
    )
