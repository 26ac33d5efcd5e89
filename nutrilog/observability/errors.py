from __future__ import annotations


class MetricError(Exception):
    """Base class for registry errors."""


class MetricConfigurationError(MetricError):
    """A family was re-registered with an incompatible kind or bucket layout."""


class MetricValidationError(MetricError, ValueError):
    """Malformed name or label set, or a negative counter delta."""
