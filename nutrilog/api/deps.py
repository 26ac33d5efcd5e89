from __future__ import annotations

from fastapi import Request

from nutrilog.analytics.tracker import AnalyticsStorage
from nutrilog.observability.registry import MetricRegistry


def get_registry(request: Request) -> MetricRegistry:
    return request.app.state.registry


def get_analytics_storage(request: Request) -> AnalyticsStorage:
    return request.app.state.analytics_storage
