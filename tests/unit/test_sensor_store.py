"""
Unit tests for the sensor store.
"""

import threading

import pytest
from unittest.mock import Mock

from flowercare.updater.store import NoDataError, SensorStore, SensorStoreError, UnknownSensorError
from flowercare.utils.config import Sensor
from tests.fixtures.sensor_data import make_reading


class TestSensorStore:
    """Test registration and lookups."""

    def setup_method(self):
        self.store = SensorStore(Mock())
        self.sensor = Sensor(address="C4:7C:8D:6A:3E:11", name="basil")
        self.store.register(self.sensor)

    def test_unknown_address_raises(self):
        with pytest.raises(UnknownSensorError) as exc_info:
            self.store.get_latest("AA:BB")

        assert exc_info.value.address == "AA:BB"
        assert "no sensor with MAC address registered" in str(exc_info.value)

    def test_registered_without_reading_raises_no_data(self):
        with pytest.raises(NoDataError):
            self.store.get_latest(self.sensor.address)

    def test_errors_share_base_class(self):
        """The collector only needs to catch the base error."""
        assert issubclass(UnknownSensorError, SensorStoreError)
        assert issubclass(NoDataError, SensorStoreError)

    def test_set_and_get_latest(self):
        reading = make_reading(temperature=19.0)
        self.store.set_latest(self.sensor.address, reading)

        assert self.store.get_latest(self.sensor.address) is reading

    def test_set_latest_replaces_previous(self):
        self.store.set_latest(self.sensor.address, make_reading(moisture=10))
        newer = make_reading(moisture=55)
        self.store.set_latest(self.sensor.address, newer)

        assert self.store.get_latest(self.sensor.address).moisture_percent == 55

    def test_set_latest_unknown_address_raises(self):
        with pytest.raises(UnknownSensorError):
            self.store.set_latest("AA:BB", make_reading())

    def test_register_again_clears_reading(self):
        self.store.set_latest(self.sensor.address, make_reading())
        renamed = Sensor(address=self.sensor.address, name="parsley")

        self.store.register(renamed)

        assert self.store.get_sensor(self.sensor.address) == renamed
        with pytest.raises(NoDataError):
            self.store.get_latest(self.sensor.address)
        assert len(self.store) == 1

    def test_sensors_in_registration_order(self):
        other = Sensor(address="C4:7C:8D:6A:3E:22")
        self.store.register(other)

        assert self.store.sensors() == [self.sensor, other]
        assert other.address in self.store
        assert "AA:BB" not in self.store


class TestSensorStoreConcurrency:
    """Test that readers never observe a partially written reading."""

    def test_concurrent_reads_see_whole_readings(self):
        store = SensorStore(Mock())
        address = "C4:7C:8D:6A:3E:11"
        store.register(Sensor(address=address))

        # Every reading carries the same number in all fields
        readings = [make_reading(temperature=float(i), moisture=i, light=i, conductivity=i)
                    for i in range(200)]
        store.set_latest(address, readings[0])

        torn = []
        done = threading.Event()

        def writer():
            for reading in readings:
                store.set_latest(address, reading)
            done.set()

        def reader():
            while not done.is_set():
                reading = store.get_latest(address)
                if not (reading.moisture_percent == reading.light_lux == reading.conductivity
                        == int(reading.temperature_celsius)):
                    torn.append(reading)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for thread in threads:
            thread.start()
        writer()
        for thread in threads:
            thread.join(timeout=5)

        assert torn == []
        assert store.get_latest(address) is readings[-1]
