from __future__ import annotations

from fastapi import FastAPI

from nutrilog.analytics.tracker import AnalyticsStorage, InMemoryStorage
from nutrilog.api.analytics import router as analytics_router
from nutrilog.api.metrics import router as metrics_router
from nutrilog.config import get_settings
from nutrilog.observability.logging import configure_logging
from nutrilog.observability.middleware import RequestContextMiddleware
from nutrilog.observability.registry import MetricRegistry


def create_app(
    registry: MetricRegistry | None = None,
    analytics_storage: AnalyticsStorage | None = None,
) -> FastAPI:
    """Build the app around one registry; tests pass a fresh one per run."""

    settings = get_settings()
    configure_logging(settings.log_level, json_logs=settings.log_json)

    registry = registry if registry is not None else MetricRegistry()

    app = FastAPI(title=settings.app_name, version="0.1.0")
    app.state.registry = registry
    app.state.analytics_storage = analytics_storage if analytics_storage is not None else InMemoryStorage()
    app.add_middleware(RequestContextMiddleware, registry=registry)
    app.include_router(metrics_router)
    app.include_router(analytics_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
