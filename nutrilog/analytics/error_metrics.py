"""Counters for the app's error-recovery paths: cancelled requests, network
retries and image fallbacks, plus a summary over them and authz violations."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

import structlog

from nutrilog.analytics.tracker import best_effort
from nutrilog.models.schemas import ErrorHandlingSummary
from nutrilog.observability.registry import MetricRegistry


FallbackReason = Literal["timeout", "error", "invalid", "not_found"]

_FALLBACK_REASONS = frozenset({"timeout", "error", "invalid", "not_found"})

_log = structlog.get_logger("analytics")


class ErrorPathMetrics:
    def __init__(self, registry: MetricRegistry) -> None:
        self._registry = registry

    @best_effort
    def track_abort_error(self, component: str | None = None, reason: str | None = None, url: str | None = None) -> None:
        self._registry.counter(
            "abort_errors_total",
            "Total number of AbortErrors (cancelled requests)",
            {"component": component or "unknown", "reason": reason or "user_navigation"},
        )
        _log.debug("abort_error", component=component, reason=reason, url=url)

    @best_effort
    def track_network_retry(self, url: str, attempt: int, success: bool, error_type: str | None = None) -> None:
        self._registry.counter(
            "network_retries_total",
            "Total number of network retry attempts",
            {
                "success": "true" if success else "false",
                "attempt": str(attempt),
                "error_type": error_type or "unknown",
            },
        )
        if success:
            self._registry.counter(
                "network_retry_success_total",
                "Total number of successful network retries",
                {"attempt": str(attempt)},
            )
        # URLs are unbounded; log only.
        _log.debug("network_retry", url=url, attempt=attempt, success=success, error_type=error_type)

    @best_effort
    def track_image_fallback(
        self,
        original_url: str,
        fallback_url: str,
        reason: FallbackReason | str,
        component: str | None = None,
    ) -> None:
        self._registry.counter(
            "image_fallback_total",
            "Total number of image fallback usages",
            {
                "reason": reason if reason in _FALLBACK_REASONS else "error",
                "component": component or "unknown",
            },
        )
        _log.debug("image_fallback", original_url=original_url, fallback_url=fallback_url, reason=reason)

    def summary(self) -> ErrorHandlingSummary:
        totals: dict[str, float] = {}
        for family in self._registry.get_all_metrics():
            totals[family.name] = sum(series.value for series in family.series)

        return ErrorHandlingSummary(
            abort_errors=totals.get("abort_errors_total", 0.0),
            authz_violations=totals.get("authz_violation_total", 0.0),
            network_retries=totals.get("network_retries_total", 0.0),
            network_retry_successes=totals.get("network_retry_success_total", 0.0),
            image_fallbacks=totals.get("image_fallback_total", 0.0),
        )

    def track_from_properties(self, name: str, properties: Mapping[str, Any]) -> bool:
        """Route a client-reported recovery event; False when ``name`` isn't one."""

        def text(key: str) -> str | None:
            value = properties.get(key)
            return str(value) if value is not None else None

        if name == "abort_error":
            self.track_abort_error(text("component"), text("reason"), text("url"))
        elif name == "network_retry":
            attempt = properties.get("attempt")
            self.track_network_retry(
                text("url") or "",
                int(attempt) if isinstance(attempt, (int, float)) and not isinstance(attempt, bool) else 0,
                properties.get("success") is True,
                text("error_type"),
            )
        elif name == "image_fallback":
            self.track_image_fallback(
                text("original_url") or "",
                text("fallback_url") or "",
                text("reason") or "error",
                text("component"),
            )
        else:
            return False
        return True
