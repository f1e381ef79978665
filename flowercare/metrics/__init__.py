"""Prometheus exposition of the latest sensor readings."""

from .collector import FACTOR_CONDUCTIVITY, METRIC_PREFIX, FlowercareCollector, create_registry
from .server import MetricsServer, MetricsServerError

__all__ = [
    "FACTOR_CONDUCTIVITY",
    "METRIC_PREFIX",
    "FlowercareCollector",
    "create_registry",
    "MetricsServer",
    "MetricsServerError",
]
