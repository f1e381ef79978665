"""
Bluetooth Low Energy reader for Xiaomi Flower Care (Mi Flora) sensors.
Connects to a sensor, reads firmware/battery information, switches the sensor
into real-time mode and reads the current measurements.
"""

import asyncio
import struct
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from bleak import BleakClient
from bleak.exc import BleakError

from ..utils.logging import PerformanceMonitor


# Flower Care GATT characteristics (value handles 0x33, 0x35 and 0x38)
MODE_CHAR_UUID = "00001a00-0000-1000-8000-00805f9b34fb"
REALTIME_DATA_CHAR_UUID = "00001a01-0000-1000-8000-00805f9b34fb"
FIRMWARE_CHAR_UUID = "00001a02-0000-1000-8000-00805f9b34fb"

# Written to the mode characteristic to enable real-time readings
REALTIME_MODE_COMMAND = bytes([0xA0, 0x1F])

SENSOR_PAYLOAD_LENGTH = 16


class ReadError(Exception):
    """Raised when a sensor could not be read over BLE."""

    def __init__(self, address: str, message: str):
        super().__init__(f"{address}: {message}")
        self.address = address


@dataclass(frozen=True)
class Firmware:
    """Device status reported by the firmware characteristic."""
    version: str
    battery: int

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Firmware':
        """Parse the firmware characteristic: battery, one unknown byte, version string."""
        if len(data) < 3:
            raise ValueError(f"data not long enough: {len(data)} < 3")

        version = data[2:].decode('ascii', errors='ignore').rstrip('\x00')
        return cls(version=version, battery=data[0])


@dataclass(frozen=True)
class SensorValues:
    """Measurements reported by the real-time data characteristic."""
    temperature: float  # Celsius
    moisture: int       # %
    light: int          # lux
    conductivity: int   # µS/cm

    @classmethod
    def from_bytes(cls, data: bytes) -> 'SensorValues':
        """
        Parse the 16 byte real-time payload.

        Layout (little endian): TT TT ?? LL LL LL LL MM CC CC ?? ?? ?? ?? ?? ??
        """
        if len(data) != SENSOR_PAYLOAD_LENGTH:
            raise ValueError(f"invalid data length: {len(data)} != {SENSOR_PAYLOAD_LENGTH}")

        temperature, light, moisture, conductivity = struct.unpack_from('<hxIBH', data)
        return cls(
            temperature=temperature / 10,
            moisture=moisture,
            light=light,
            conductivity=conductivity
        )


@dataclass(frozen=True)
class Reading:
    """One successful snapshot of a sensor."""
    timestamp: datetime
    firmware_version: str
    battery_percent: int
    temperature_celsius: float
    moisture_percent: int
    light_lux: int
    conductivity: int  # µS/cm

    @classmethod
    def from_parts(cls, firmware: Firmware, values: SensorValues,
                   timestamp: Optional[datetime] = None) -> 'Reading':
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc),
            firmware_version=firmware.version,
            battery_percent=firmware.battery,
            temperature_celsius=values.temperature,
            moisture_percent=values.moisture,
            light_lux=values.light,
            conductivity=values.conductivity
        )


class MifloraReader:
    """
    Reads Flower Care sensors through one Bluetooth adapter.

    The adapter can only serve one connection at a time; callers are expected
    to funnel all reads through a single task (see ``flowercare.updater``).
    """

    def __init__(self, adapter: str, logger, performance_monitor: Optional[PerformanceMonitor] = None,
                 connect_timeout: float = 20.0):
        """
        Initialize reader.

        Args:
            adapter: Bluetooth adapter name, e.g. ``hci0``
            logger: Logger instance
            performance_monitor: Performance monitoring instance
            connect_timeout: Connection timeout in seconds
        """
        self.adapter = adapter
        self.logger = logger
        self.performance_monitor = performance_monitor
        self.connect_timeout = connect_timeout

    def _create_client(self, address: str) -> BleakClient:
        return BleakClient(address, adapter=self.adapter, timeout=self.connect_timeout)

    async def read_sensor(self, address: str) -> Reading:
        """
        Read the current values of one sensor.

        Args:
            address: MAC address of the sensor

        Returns:
            Reading: Snapshot of the sensor

        Raises:
            ReadError: If connecting, reading or parsing fails
        """
        start = time.monotonic()
        success = False
        try:
            reading = await self._read(address)
            success = True
            return reading
        finally:
            if self.performance_monitor is not None:
                self.performance_monitor.log_sensor_read(address, time.monotonic() - start, success)

    async def _read(self, address: str) -> Reading:
        self.logger.debug(f"Reading data for {address!r} on {self.adapter!r}")
        client = self._create_client(address)

        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise ReadError(address, f"error dialing: {e}") from e

        try:
            try:
                firmware_raw = await client.read_gatt_char(FIRMWARE_CHAR_UUID)
            except (BleakError, asyncio.TimeoutError, OSError) as e:
                raise ReadError(address, f"error reading firmware info: {e}") from e

            try:
                firmware = Firmware.from_bytes(bytes(firmware_raw))
            except ValueError as e:
                raise ReadError(address, f"error parsing firmware info: {e}") from e
            self.logger.debug(f"Firmware of {address!r}: {firmware}")

            try:
                await client.write_gatt_char(MODE_CHAR_UUID, REALTIME_MODE_COMMAND, response=True)
            except (BleakError, asyncio.TimeoutError, OSError) as e:
                raise ReadError(address, f"can not enable realtime reading: {e}") from e

            try:
                sensors_raw = await client.read_gatt_char(REALTIME_DATA_CHAR_UUID)
            except (BleakError, asyncio.TimeoutError, OSError) as e:
                raise ReadError(address, f"error reading sensor data: {e}") from e

            try:
                values = SensorValues.from_bytes(bytes(sensors_raw))
            except ValueError as e:
                raise ReadError(address, f"error parsing sensor data: {e}") from e
            self.logger.debug(f"Sensors of {address!r}: {values}")

            return Reading.from_parts(firmware, values)

        finally:
            try:
                await client.disconnect()
            except (BleakError, asyncio.TimeoutError, OSError) as e:
                self.logger.warning(f"Error disconnecting from {address}: {e}")
