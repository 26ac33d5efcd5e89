import math

from nutrilog.observability.exposition import escape_label_value, format_value, render
from nutrilog.observability.registry import MetricRegistry


def test_render_empty_registry_is_empty_string(registry: MetricRegistry) -> None:
    assert render(registry.get_all_metrics()) == ""


def test_render_counter_and_gauge(registry: MetricRegistry) -> None:
    registry.counter("test_counter", "Test counter", {}, 1)
    registry.gauge("test_gauge", "Test gauge", 10, {})

    text = render(registry.get_all_metrics())
    lines = text.splitlines()

    assert "# HELP test_counter Test counter" in lines
    assert "# TYPE test_counter counter" in lines
    assert "test_counter 1" in lines
    assert "# TYPE test_gauge gauge" in lines
    assert "test_gauge 10" in lines
    assert text.endswith("\n")
    # Families in name order.
    assert lines.index("# HELP test_counter Test counter") < lines.index("# HELP test_gauge Test gauge")


def test_render_labels_sorted_and_escaped(registry: MetricRegistry) -> None:
    registry.counter("page_view_total", "Page views", {"role": "client", "page": 'say "hi"\\\n'})

    text = render(registry.get_all_metrics())
    assert 'page_view_total{page="say \\"hi\\"\\\\\\n",role="client"} 1' in text.splitlines()


def test_format_value_shortest_round_trip() -> None:
    assert format_value(3.0) == "3"
    assert format_value(-2.0) == "-2"
    assert format_value(0.1) == "0.1"
    assert format_value(2.5) == "2.5"
    assert format_value(1e20) == "1e+20"
    assert format_value(math.inf) == "+Inf"
    assert format_value(-math.inf) == "-Inf"
    assert format_value(math.nan) == "NaN"


def test_escape_label_value() -> None:
    assert escape_label_value('a\\b"c\nd') == 'a\\\\b\\"c\\nd'


def test_render_help_escapes_newlines(registry: MetricRegistry) -> None:
    registry.counter("x_total", "line one\nline two")
    assert "# HELP x_total line one\\nline two" in render(registry.get_all_metrics())


def test_render_histogram(registry: MetricRegistry) -> None:
    registry.histogram("ttfv_seconds", "Time to First Value in seconds", 0.4, {"action": "meal"}, buckets=[0.5, 1])
    registry.histogram("ttfv_seconds", "Time to First Value in seconds", 3, {"action": "meal"}, buckets=[0.5, 1])

    lines = render(registry.get_all_metrics()).splitlines()
    assert lines[:2] == [
        "# HELP ttfv_seconds Time to First Value in seconds",
        "# TYPE ttfv_seconds histogram",
    ]
    assert lines[2:] == [
        'ttfv_seconds_bucket{action="meal",le="0.5"} 1',
        'ttfv_seconds_bucket{action="meal",le="1"} 1',
        'ttfv_seconds_bucket{action="meal",le="+Inf"} 2',
        'ttfv_seconds_sum{action="meal"} 3.4',
        'ttfv_seconds_count{action="meal"} 2',
    ]
