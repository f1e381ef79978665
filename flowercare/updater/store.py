"""
In-memory store of the latest reading of every registered sensor.

The update loop is the only writer. Metric scrapes read from HTTP server
threads, so access to the record map is guarded by a lock; readings are
immutable and swapped by reference.
"""

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..ble.miflora import Reading
from ..utils.config import Sensor


class SensorStoreError(Exception):
    """Base exception for sensor store lookups."""
    pass


class UnknownSensorError(SensorStoreError):
    """Raised for addresses that were never registered."""

    def __init__(self, address: str):
        super().__init__(f"no sensor with MAC address registered: {address}")
        self.address = address


class NoDataError(SensorStoreError):
    """Raised when a registered sensor has not been read successfully yet."""

    def __init__(self, address: str):
        super().__init__(f"no data available for {address}")
        self.address = address


@dataclass
class SensorRecord:
    """Slot holding a sensor identity and its latest reading."""
    sensor: Sensor
    latest_reading: Optional[Reading] = None


class SensorStore:
    """
    Thread-safe map from sensor address to its latest reading.

    A plain mutex instead of a readers-writer lock: scrapes also wait on each
    other, but every critical section is a single dict lookup or assignment.
    """

    def __init__(self, logger):
        self.logger = logger
        self._lock = threading.Lock()
        self._records: Dict[str, SensorRecord] = {}

    def register(self, sensor: Sensor):
        """
        Add a sensor without a reading.

        Registering an address again replaces its identity and drops the
        previous reading.
        """
        with self._lock:
            if sensor.address in self._records:
                self.logger.debug(f"Re-registering sensor {sensor}")
            else:
                self.logger.debug(f"Adding sensor {sensor}")
            self._records[sensor.address] = SensorRecord(sensor=sensor)

    def get_latest(self, address: str) -> Reading:
        """
        Return the latest reading of a sensor.

        Raises:
            UnknownSensorError: If the address was never registered
            NoDataError: If no read of the sensor has succeeded yet
        """
        with self._lock:
            record = self._records.get(address)
            if record is None:
                raise UnknownSensorError(address)

            reading = record.latest_reading

        if reading is None:
            raise NoDataError(address)

        return reading

    def set_latest(self, address: str, reading: Reading):
        """
        Replace the latest reading of a sensor.

        Raises:
            UnknownSensorError: If the address was never registered
        """
        with self._lock:
            record = self._records.get(address)
            if record is None:
                raise UnknownSensorError(address)

            record.latest_reading = reading

    def get_sensor(self, address: str) -> Sensor:
        """Return the identity registered for an address."""
        with self._lock:
            record = self._records.get(address)
            if record is None:
                raise UnknownSensorError(address)
            return record.sensor

    def sensors(self) -> List[Sensor]:
        """Return all registered sensors in registration order."""
        with self._lock:
            return [record.sensor for record in self._records.values()]

    def __contains__(self, address: str) -> bool:
        with self._lock:
            return address in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
