import pytest

from nutrilog.analytics.error_metrics import ErrorPathMetrics
from nutrilog.observability.registry import MetricRegistry
from nutrilog.security.authz import AccessContext, ViolationDetector

from conftest import series_value


@pytest.fixture
def error_paths(registry: MetricRegistry) -> ErrorPathMetrics:
    return ErrorPathMetrics(registry)


def test_abort_error_defaults(registry: MetricRegistry, error_paths: ErrorPathMetrics) -> None:
    error_paths.track_abort_error()
    error_paths.track_abort_error(component="Diary", reason="unmount")

    assert series_value(registry, "abort_errors_total", component="unknown", reason="user_navigation") == 1
    assert series_value(registry, "abort_errors_total", component="Diary", reason="unmount") == 1


def test_failed_retry_is_not_a_success(registry: MetricRegistry, error_paths: ErrorPathMetrics) -> None:
    error_paths.track_network_retry("/api/meals", 1, False)

    assert series_value(registry, "network_retries_total", success="false", attempt="1", error_type="unknown") == 1
    assert registry.get_metrics_by_name("network_retry_success_total") is None


def test_unknown_fallback_reason_is_bucketed(registry: MetricRegistry, error_paths: ErrorPathMetrics) -> None:
    error_paths.track_image_fallback("https://cdn/a.png", "/ph.png", "cosmic rays", component="Avatar")
    assert series_value(registry, "image_fallback_total", reason="error", component="Avatar") == 1


def test_summary_includes_authz_violations(registry: MetricRegistry, error_paths: ErrorPathMetrics) -> None:
    ViolationDetector(registry).record_violation({"code": "42501"}, AccessContext(table="meals", operation="SELECT"))
    error_paths.track_network_retry("/api/meals", 1, True)
    error_paths.track_network_retry("/api/meals", 2, True)

    summary = error_paths.summary()
    assert summary.authz_violations == 1
    assert summary.network_retries == 2
    assert summary.network_retry_successes == 2
    assert summary.abort_errors == 0


def test_registry_failures_are_swallowed(
    registry: MetricRegistry, error_paths: ErrorPathMetrics, monkeypatch: pytest.MonkeyPatch
) -> None:
    def boom(*args, **kwargs):
        raise RuntimeError("registry down")

    monkeypatch.setattr(registry, "counter", boom)
    assert error_paths.track_abort_error() is None
    assert error_paths.track_network_retry("/x", 1, True) is None
    assert error_paths.track_image_fallback("/a", "/b", "timeout") is None


def test_unrelated_event_names_are_not_routed(error_paths: ErrorPathMetrics) -> None:
    assert error_paths.track_from_properties("save_failed", {}) is False
