"""
Flower Care Exporter - Prometheus metrics for Xiaomi Mi Flora sensors.

Polls Flower Care plant sensors over Bluetooth Low Energy and exposes their
latest readings as Prometheus metrics.

Features:
- One shared Bluetooth adapter, sensors are read one at a time
- Exponential backoff for sensors that can not be reached
- Scrapes are served from memory and never wait for the radio
- Configuration via environment variables, .env file or command line
"""

__version__ = "1.0.0"
__description__ = "Prometheus exporter for Flower Care BLE plant sensors"

# Replaced by release builds
__commit__ = "none"
__build_date__ = "unknown"

from .utils.config import Config, ConfigurationError, InvalidRetryConfigError, RetryConfig, Sensor
from .updater import BackoffPolicy, NoDataError, SensorStore, UnknownSensorError, Updater

__all__ = [
    "Config",
    "ConfigurationError",
    "InvalidRetryConfigError",
    "RetryConfig",
    "Sensor",
    "BackoffPolicy",
    "NoDataError",
    "SensorStore",
    "UnknownSensorError",
    "Updater",
]
