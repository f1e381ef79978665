"""
Prometheus collector exposing the latest Flower Care readings.
"""

from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from prometheus_client import CollectorRegistry, Gauge
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector

from ..ble.miflora import Reading
from ..updater.store import SensorStoreError
from ..utils.config import Sensor, format_duration


# Prefix used by all metrics emitted from this collector
METRIC_PREFIX = "flowercare_"

# Conversion factor from µS/cm to S/m
FACTOR_CONDUCTIVITY = 0.0001

LABEL_NAMES = ["macaddress", "name"]


class FlowercareCollector(Collector):
    """
    Emits the metrics of a set of Flower Care sensors on every scrape.

    Readings come from ``source`` (usually ``SensorStore.get_latest``), which
    only looks at in-memory state; scrapes never touch the radio. Readings
    older than ``stale_after`` seconds are reported through ``up``,
    ``updated_timestamp`` and ``info`` only.
    """

    def __init__(self, source: Callable[[str], Reading], sensors: Iterable[Sensor],
                 stale_after: float, logger,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.source = source
        self.sensors: List[Sensor] = list(sensors)
        self.stale_after = stale_after
        self.logger = logger
        self._clock = clock

    def _families(self) -> dict:
        return {
            'up': GaugeMetricFamily(
                METRIC_PREFIX + "up",
                "Shows if data could be successfully retrieved by the collector.",
                labels=LABEL_NAMES),
            'updated_timestamp': GaugeMetricFamily(
                METRIC_PREFIX + "updated_timestamp",
                "Contains the timestamp when the last communication with the Bluetooth device happened.",
                labels=LABEL_NAMES),
            'info': GaugeMetricFamily(
                METRIC_PREFIX + "info",
                "Contains information about the Flower Care device.",
                labels=LABEL_NAMES + ["version"]),
            'battery': GaugeMetricFamily(
                METRIC_PREFIX + "battery_percent",
                "Battery level in percent.",
                labels=LABEL_NAMES),
            'conductivity': GaugeMetricFamily(
                METRIC_PREFIX + "conductivity_sm",
                "Soil conductivity in Siemens/meter.",
                labels=LABEL_NAMES),
            'light': GaugeMetricFamily(
                METRIC_PREFIX + "brightness_lux",
                "Ambient lighting in lux.",
                labels=LABEL_NAMES),
            'moisture': GaugeMetricFamily(
                METRIC_PREFIX + "moisture_percent",
                "Soil relative moisture in percent.",
                labels=LABEL_NAMES),
            'temperature': GaugeMetricFamily(
                METRIC_PREFIX + "temperature_celsius",
                "Ambient temperature in celsius.",
                labels=LABEL_NAMES),
        }

    def describe(self):
        return list(self._families().values())

    def collect(self):
        families = self._families()
        for sensor in self.sensors:
            self._collect_sensor(families, sensor)
        return list(families.values())

    def _collect_sensor(self, families: dict, sensor: Sensor):
        labels = [sensor.address, sensor.name]

        try:
            reading = self.source(sensor.address)
        except SensorStoreError as e:
            self.logger.debug(f"Error getting data for {sensor}: {e}")
            families['up'].add_metric(labels, 0)
            return

        families['up'].add_metric(labels, 1)
        families['updated_timestamp'].add_metric(labels, reading.timestamp.timestamp())
        families['info'].add_metric(labels + [reading.firmware_version], 1)

        age = (self._clock() - reading.timestamp).total_seconds()
        if age >= self.stale_after:
            self.logger.debug(
                f"Data for {sensor} is stale: {format_duration(age)} > {format_duration(self.stale_after)}"
            )
            return

        families['battery'].add_metric(labels, reading.battery_percent)
        families['conductivity'].add_metric(labels, reading.conductivity * FACTOR_CONDUCTIVITY)
        families['light'].add_metric(labels, reading.light_lux)
        families['moisture'].add_metric(labels, reading.moisture_percent)
        families['temperature'].add_metric(labels, reading.temperature_celsius)


def create_registry(collector: FlowercareCollector, version: str, commit: str = "none",
                    date: str = "unknown",
                    registry: Optional[CollectorRegistry] = None) -> CollectorRegistry:
    """Create a registry holding the sensor collector and the build info metric."""
    if registry is None:
        registry = CollectorRegistry()

    registry.register(collector)

    build_info = Gauge(
        METRIC_PREFIX + "build_info",
        "Contains build information as labels. Value set to 1.",
        ["version", "commit", "date"],
        registry=registry
    )
    build_info.labels(version=version, commit=commit, date=date).set(1)

    return registry
