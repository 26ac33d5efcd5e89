from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from nutrilog.analytics.error_metrics import ErrorPathMetrics
from nutrilog.api.deps import get_registry
from nutrilog.config import get_settings
from nutrilog.models.schemas import ErrorHandlingSummary
from nutrilog.observability.exposition import CONTENT_TYPE, render
from nutrilog.observability.registry import MetricRegistry


router = APIRouter(tags=["metrics"])

ERROR_BODY = "# Error exporting metrics\n"


@router.get("/metrics", include_in_schema=False)
def metrics(registry: MetricRegistry = Depends(get_registry)) -> Response:
    """Prometheus scrape target; no auth here, restrict it at the deployment edge."""

    settings = get_settings()
    if not settings.enable_metrics_endpoint:
        raise HTTPException(status_code=404, detail="Not found")

    try:
        body = render(registry.get_all_metrics())
    except Exception:
        structlog.get_logger("metrics").exception("metrics_export_failed")
        return Response(content=ERROR_BODY, status_code=500, media_type=CONTENT_TYPE)

    return Response(content=body, status_code=200, media_type=CONTENT_TYPE)


@router.get("/api/metrics/error-handling", response_model=ErrorHandlingSummary)
def error_handling_summary(registry: MetricRegistry = Depends(get_registry)) -> ErrorHandlingSummary:
    settings = get_settings()
    if not settings.enable_metrics_endpoint:
        raise HTTPException(status_code=404, detail="Not found")
    return ErrorPathMetrics(registry).summary()
