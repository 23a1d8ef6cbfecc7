"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from portfolio_ai.api.v1.router import api_router
from portfolio_ai.core.config import Settings, get_settings
from portfolio_ai.observability import (
    MetricsBackend,
    RequestLoggingMiddleware,
    build_metrics_backend,
    configure_logging,
    setup_tracing,
)
from portfolio_ai.services.container import AssistantServices, build_services


def create_app(
    settings: Settings | None = None,
    services: AssistantServices | None = None,
    metrics: MetricsBackend | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Defaults to the cached environment settings.
        services: Prebuilt services (tests). When omitted they are built
            in the lifespan and disposed on shutdown.
        metrics: Metrics backend shared by middleware and services.
    """
    settings = settings or get_settings()
    metrics_backend = metrics or build_metrics_backend(settings.metrics_backend)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan events."""
        # Startup
        owns_services = services is None
        if owns_services:
            app.state.services = await build_services(settings, metrics_backend)
        yield
        # Shutdown
        if owns_services:
            await app.state.services.close()
        else:
            await app.state.services.retriever.wait_for_pending_updates()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.metrics = metrics_backend

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware, metrics=metrics_backend)
    setup_tracing(app, settings)

    # Include API router
    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "version": settings.app_version}

    @app.get("/metrics", include_in_schema=False)
    async def metrics_endpoint() -> PlainTextResponse:
        """Prometheus-style metrics endpoint."""
        return PlainTextResponse(metrics_backend.render_prometheus())

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
