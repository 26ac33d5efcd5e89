from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from threading import Lock
from typing import Literal

from nutrilog.observability.errors import MetricConfigurationError, MetricValidationError


MetricKind = Literal["counter", "gauge", "histogram"]

DEFAULT_BUCKETS: tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

LabelPairs = tuple[tuple[str, str], ...]


def _validate_name(name: object) -> str:
    if not isinstance(name, str) or not _METRIC_NAME_RE.match(name):
        raise MetricValidationError(f"Invalid metric name: {name!r}")
    return name


def _normalize_labels(labels: Mapping[str, str] | None, *, reserved: frozenset[str] = frozenset()) -> LabelPairs:
    if not labels:
        return ()
    if not isinstance(labels, Mapping):
        raise MetricValidationError(f"Labels must be a mapping, got {type(labels).__name__}")

    pairs: list[tuple[str, str]] = []
    for key, value in labels.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise MetricValidationError(f"Label keys and values must be strings: {key!r}={value!r}")
        if not _LABEL_NAME_RE.match(key) or key.startswith("__") or key in reserved:
            raise MetricValidationError(f"Invalid label name: {key!r}")
        pairs.append((key, value))
    pairs.sort()
    return tuple(pairs)


def _as_number(value: object, what: str) -> float:
    # bool is an int subclass; reject it so True doesn't quietly become 1.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MetricValidationError(f"{what} must be a number, got {value!r}")
    return float(value)


def escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _label_key(pairs: LabelPairs) -> str:
    return ",".join(f'{key}="{escape_label_value(value)}"' for key, value in pairs)


def canonical_labels(labels: Mapping[str, str] | None) -> str:
    """Identity string for a label set: keys sorted, joined as k1="v1",k2="v2"."""

    return _label_key(_normalize_labels(labels))


@dataclass(frozen=True)
class Series:
    labels: LabelPairs
    value: float = 0.0
    # Histogram only: (upper bound, cumulative count) with +Inf last.
    buckets: tuple[tuple[float, int], ...] = ()
    sum: float = 0.0
    count: int = 0

    @property
    def label_key(self) -> str:
        return _label_key(self.labels)

    def label_dict(self) -> dict[str, str]:
        return dict(self.labels)


@dataclass(frozen=True)
class MetricFamily:
    name: str
    help: str
    kind: MetricKind
    series: tuple[Series, ...]


@dataclass
class _SeriesState:
    labels: LabelPairs
    value: float = 0.0
    bucket_counts: list[int] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def freeze(self, bounds: tuple[float, ...]) -> Series:
        buckets: tuple[tuple[float, int], ...] = ()
        if bounds:
            buckets = tuple(zip(bounds, self.bucket_counts)) + ((math.inf, self.count),)
        return Series(labels=self.labels, value=self.value, buckets=buckets, sum=self.sum, count=self.count)


@dataclass
class _FamilyState:
    name: str
    help: str
    kind: MetricKind
    bounds: tuple[float, ...] = ()
    # Keyed by the label pairs themselves; the string form is only for ordering.
    series: dict[LabelPairs, _SeriesState] = field(default_factory=dict)

    def freeze(self) -> MetricFamily:
        ordered = sorted(self.series.items(), key=lambda item: _label_key(item[0]))
        return MetricFamily(
            name=self.name,
            help=self.help,
            kind=self.kind,
            series=tuple(state.freeze(self.bounds) for _, state in ordered),
        )


class MetricRegistry:
    """Thread-safe, process-local store of labeled counters, gauges and histograms.

    A single lock guards both writes and snapshot reads, so a scrape never sees a
    series mid-update. Every operation is O(label set size); nothing blocks on I/O.
    Series are created lazily and only ever removed by ``clear()``.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._families: dict[str, _FamilyState] = {}

    def _series(
        self,
        name: str,
        help: str,
        kind: MetricKind,
        pairs: LabelPairs,
        bounds: tuple[float, ...] = (),
    ) -> _SeriesState:
        # Caller holds self._lock.
        family = self._families.get(name)
        if family is None:
            family = _FamilyState(name=name, help=help, kind=kind, bounds=bounds)
            self._families[name] = family
        elif family.kind != kind:
            raise MetricConfigurationError(
                f"Metric {name!r} is registered as {family.kind}, cannot use it as {kind}"
            )
        elif family.bounds != bounds:
            raise MetricConfigurationError(f"Metric {name!r} is registered with different buckets")

        # Last write wins for help text.
        family.help = help

        state = family.series.get(pairs)
        if state is None:
            state = _SeriesState(labels=pairs, bucket_counts=[0] * len(bounds))
            family.series[pairs] = state
        return state

    def counter(self, name: str, help: str, labels: Mapping[str, str] | None = None, delta: float = 1) -> None:
        _validate_name(name)
        pairs = _normalize_labels(labels)
        amount = _as_number(delta, "Counter delta")
        if not amount >= 0:
            raise MetricValidationError(f"Counter {name!r} can only increase, got delta={delta!r}")

        with self._lock:
            self._series(name, help, "counter", pairs).value += amount

    def gauge(self, name: str, help: str, value: float, labels: Mapping[str, str] | None = None) -> None:
        _validate_name(name)
        pairs = _normalize_labels(labels)
        number = _as_number(value, "Gauge value")

        with self._lock:
            self._series(name, help, "gauge", pairs).value = number

    def gauge_inc(self, name: str, help: str, labels: Mapping[str, str] | None = None, delta: float = 1) -> None:
        _validate_name(name)
        pairs = _normalize_labels(labels)
        amount = _as_number(delta, "Gauge delta")

        with self._lock:
            self._series(name, help, "gauge", pairs).value += amount

    def gauge_dec(self, name: str, help: str, labels: Mapping[str, str] | None = None, delta: float = 1) -> None:
        self.gauge_inc(name, help, labels, -_as_number(delta, "Gauge delta"))

    def histogram(
        self,
        name: str,
        help: str,
        value: float,
        labels: Mapping[str, str] | None = None,
        buckets: tuple[float, ...] | list[float] | None = None,
    ) -> None:
        _validate_name(name)
        pairs = _normalize_labels(labels, reserved=frozenset({"le"}))
        number = _as_number(value, "Observation")
        requested = DEFAULT_BUCKETS if buckets is None else buckets
        bounds = tuple(sorted({_as_number(b, "Bucket bound") for b in requested}))
        # +Inf is implicit.
        bounds = tuple(b for b in bounds if not math.isinf(b))
        if not bounds:
            raise MetricConfigurationError(f"Histogram {name!r} needs at least one finite bucket")

        with self._lock:
            state = self._series(name, help, "histogram", pairs, bounds)
            for i, bound in enumerate(bounds):
                if number <= bound:
                    state.bucket_counts[i] += 1
            state.sum += number
            state.count += 1

    def get_all_metrics(self) -> tuple[MetricFamily, ...]:
        """Deep-copied snapshot, families sorted by name and series by label string."""

        with self._lock:
            return tuple(self._families[name].freeze() for name in sorted(self._families))

    def get_metrics_by_name(self, name: str) -> MetricFamily | None:
        with self._lock:
            family = self._families.get(name)
            return family.freeze() if family is not None else None

    def clear(self) -> None:
        """Drop every family and series (used by tests)."""

        with self._lock:
            self._families.clear()
