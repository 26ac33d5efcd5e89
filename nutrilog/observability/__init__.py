"""Observability: the in-process metric registry, its Prometheus exposition,
request middleware and structlog configuration.

The registry is an explicit object (see ``MetricRegistry``) owned by the app;
nothing in this package reaches for module-level metric state.
"""
