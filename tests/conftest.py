"""
Pytest configuration and shared fixtures for Flower Care Exporter tests.
Provides common test fixtures, mock objects, and test utilities.
"""

import pytest
from unittest.mock import Mock

from flowercare.updater.backoff import BackoffPolicy
from flowercare.updater.scheduler import Updater
from flowercare.updater.store import SensorStore
from flowercare.utils.config import RetryConfig, Sensor
from flowercare.utils.logging import PerformanceMonitor
from tests.mocks.mock_miflora import FakeMifloraReader


SENSOR_A = Sensor(address="C4:7C:8D:6A:3E:11", name="basil")
SENSOR_B = Sensor(address="C4:7C:8D:6A:3E:22", name="tomato")


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    logger = Mock()
    logger.debug = Mock()
    logger.info = Mock()
    logger.warning = Mock()
    logger.error = Mock()
    logger.exception = Mock()
    return logger


@pytest.fixture
def mock_performance_monitor():
    """Create a mock performance monitor for testing."""
    return Mock(spec=PerformanceMonitor)


@pytest.fixture
def sensor_a():
    return SENSOR_A


@pytest.fixture
def sensor_b():
    return SENSOR_B


@pytest.fixture
def backoff():
    """Backoff policy with 30s floor, 30m ceiling and factor 2."""
    return BackoffPolicy(RetryConfig(min_duration=30.0, max_duration=1800.0, factor=2.0))


@pytest.fixture
def store(mock_logger, sensor_a, sensor_b):
    """Store with both test sensors registered."""
    store = SensorStore(mock_logger)
    store.register(sensor_a)
    store.register(sensor_b)
    return store


@pytest.fixture
def fake_reader():
    return FakeMifloraReader()


@pytest.fixture
def updater(fake_reader, store, backoff, mock_logger):
    """Updater on a fake reader whose clock stays at 0 unless ``now`` is passed."""
    return Updater(fake_reader, store, backoff, mock_logger, tick_interval=0.01, clock=lambda: 0.0)


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "requires_bluetooth: mark test as requiring Bluetooth hardware"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on test location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
