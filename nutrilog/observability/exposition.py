"""Prometheus text exposition format (version 0.0.4)."""

from __future__ import annotations

import math
from collections.abc import Iterable

from nutrilog.observability.registry import LabelPairs, MetricFamily, Series, escape_label_value


CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    # From 1e16 on repr() switches to exponent form, which has no decimal point either.
    if value == int(value) and abs(value) < 1e16:
        return str(int(value))
    # repr() is the shortest string that round-trips.
    return repr(float(value))


def escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def format_labels(pairs: LabelPairs) -> str:
    if not pairs:
        return ""
    body = ",".join(f'{key}="{escape_label_value(value)}"' for key, value in pairs)
    return "{" + body + "}"


def _histogram_lines(name: str, series: Series) -> list[str]:
    lines: list[str] = []
    for bound, count in series.buckets:
        pairs = tuple(sorted(series.labels + (("le", format_value(bound)),)))
        lines.append(f"{name}_bucket{format_labels(pairs)} {count}")
    labels = format_labels(series.labels)
    lines.append(f"{name}_sum{labels} {format_value(series.sum)}")
    lines.append(f"{name}_count{labels} {series.count}")
    return lines


def render(snapshot: Iterable[MetricFamily]) -> str:
    """Render a registry snapshot; an empty snapshot renders to an empty string."""

    lines: list[str] = []
    for family in sorted(snapshot, key=lambda f: f.name):
        lines.append(f"# HELP {family.name} {escape_help(family.help)}")
        lines.append(f"# TYPE {family.name} {family.kind}")
        for series in family.series:
            if family.kind == "histogram":
                lines.extend(_histogram_lines(family.name, series))
            else:
                lines.append(f"{family.name}{format_labels(series.labels)} {format_value(series.value)}")

    if not lines:
        return ""
    return "\n".join(lines) + "\n"
