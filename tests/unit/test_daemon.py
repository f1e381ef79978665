"""
Unit tests for the exporter daemon wiring and lifecycle.
"""

import asyncio
import urllib.request

import pytest
from unittest.mock import Mock

from flowercare.service.daemon import FlowercareDaemon, FlowercareDaemonError
from flowercare.utils.config import Config, ConfigurationError, InvalidRetryConfigError
from tests.fixtures.sensor_data import make_reading
from tests.mocks.mock_miflora import BLOCK, FakeMifloraReader


ADDRESS_A = "C4:7C:8D:6A:3E:11"
ADDRESS_B = "C4:7C:8D:6A:3E:22"


async def wait_until(predicate, timeout: float = 5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def make_config(tmp_path, **overrides) -> Config:
    values = {
        "FLOWERCARE_SENSORS": f"basil={ADDRESS_A},{ADDRESS_B}",
        "FLOWERCARE_LISTEN_ADDR": "127.0.0.1:0",
        "REFRESH_INTERVAL": "1h",
        "UPDATE_TICK_INTERVAL": "10ms",
        "COOLDOWN_PERIOD": "0s",
        "PERFORMANCE_LOG_INTERVAL": "1h",
        "LOG_LEVEL": "INFO",
    }
    values.update(overrides)
    return Config(env_file=tmp_path / "missing.env", overrides=values)


class TestFlowercareDaemon:
    """Test starting, serving and stopping the daemon."""

    def setup_method(self):
        self.production_logger = Mock()
        self.reader = FakeMifloraReader()

    @pytest.mark.asyncio
    async def test_reads_sensors_and_serves_metrics(self, tmp_path):
        self.reader.script(ADDRESS_A, make_reading(moisture=44))
        self.reader.script(ADDRESS_B, make_reading(moisture=12))
        daemon = FlowercareDaemon(make_config(tmp_path), reader=self.reader,
                                  production_logger=self.production_logger)

        task = asyncio.create_task(daemon.start(install_signal_handlers=False))
        await wait_until(lambda: daemon.updater is not None and len(self.reader.calls) == 2
                         and daemon.updater.in_flight is None)

        assert daemon.get_status()['running'] is True
        assert daemon.store.get_latest(ADDRESS_A).moisture_percent == 44

        url = f"http://127.0.0.1:{daemon.metrics_server.server_port}/metrics"

        def fetch():
            with urllib.request.urlopen(url, timeout=5) as response:
                return response.read().decode()

        body = await asyncio.to_thread(fetch)
        assert f'flowercare_up{{macaddress="{ADDRESS_A}",name="basil"}} 1.0' in body
        assert 'flowercare_build_info{version=' in body

        daemon.request_shutdown()
        await asyncio.wait_for(task, timeout=15)

        status = daemon.get_status()
        assert status['running'] is False
        assert status['shutdown_requested'] is True
        assert status['stats']['refresh_cycles'] == 1
        assert daemon.updater.pending() == []

    @pytest.mark.asyncio
    async def test_failed_sensor_is_retried_later(self, tmp_path):
        self.reader.script(ADDRESS_A, make_reading())
        daemon = FlowercareDaemon(make_config(tmp_path), reader=self.reader,
                                  production_logger=self.production_logger)

        task = asyncio.create_task(daemon.start(install_signal_handlers=False))
        await wait_until(lambda: daemon.updater is not None
                         and daemon.updater.get_entry(ADDRESS_B) is not None
                         and daemon.updater.get_entry(ADDRESS_B).last_retry_delay == 30.0)

        assert daemon.get_status()['updater']['failures'] == 1

        daemon.request_shutdown()
        await asyncio.wait_for(task, timeout=15)

    @pytest.mark.asyncio
    async def test_shutdown_during_read(self, tmp_path):
        # The first read never completes
        self.reader.script(ADDRESS_A, BLOCK)
        self.reader.script(ADDRESS_B, make_reading())
        daemon = FlowercareDaemon(make_config(tmp_path), reader=self.reader,
                                  production_logger=self.production_logger)

        task = asyncio.create_task(daemon.start(install_signal_handlers=False))
        await asyncio.wait_for(self.reader.started.wait(), timeout=5)

        daemon.request_shutdown()
        await asyncio.wait_for(task, timeout=15)

        assert self.reader.cancelled == [ADDRESS_A]
        assert ADDRESS_B not in self.reader.calls

    @pytest.mark.asyncio
    async def test_dead_update_loop_stops_daemon(self, tmp_path):
        """The daemon does not keep serving frozen metrics once its update loop is gone."""
        self.reader.script(ADDRESS_A, asyncio.CancelledError())
        daemon = FlowercareDaemon(make_config(tmp_path), reader=self.reader,
                                  production_logger=self.production_logger)

        with pytest.raises(FlowercareDaemonError, match="update-loop"):
            await asyncio.wait_for(daemon.start(install_signal_handlers=False), timeout=15)

        assert self.reader.calls == [ADDRESS_A]
        assert daemon.get_status()["running"] is False
        messages = [call.args[0] for call in daemon.logger.error.call_args_list]
        assert any("update-loop ended unexpectedly" in message for message in messages)

    @pytest.mark.asyncio
    async def test_cooldown_is_applied(self, tmp_path):
        self.reader.script(ADDRESS_A, make_reading())
        self.reader.script(ADDRESS_B, make_reading())
        daemon = FlowercareDaemon(make_config(tmp_path, COOLDOWN_PERIOD="1h"), reader=self.reader,
                                  production_logger=self.production_logger)

        task = asyncio.create_task(daemon.start(install_signal_handlers=False))
        await wait_until(lambda: daemon.updater is not None and len(self.reader.calls) == 1)
        await asyncio.sleep(0.1)

        assert daemon.updater.cooldown == 3600.0
        assert self.reader.calls == [ADDRESS_A]

        daemon.request_shutdown()
        await asyncio.wait_for(task, timeout=15)

    @pytest.mark.asyncio
    async def test_invalid_retry_configuration(self, tmp_path):
        config = make_config(tmp_path, RETRY_MIN_DURATION="5s")
        daemon = FlowercareDaemon(config, reader=self.reader, production_logger=self.production_logger)

        with pytest.raises(InvalidRetryConfigError):
            await daemon.start(install_signal_handlers=False)

        assert self.reader.calls == []

    @pytest.mark.asyncio
    async def test_missing_sensors(self, tmp_path):
        config = make_config(tmp_path, FLOWERCARE_SENSORS="")
        daemon = FlowercareDaemon(config, reader=self.reader, production_logger=self.production_logger)

        with pytest.raises(ConfigurationError):
            await daemon.start(install_signal_handlers=False)

    @pytest.mark.asyncio
    async def test_start_twice(self, tmp_path):
        self.reader.script(ADDRESS_A, make_reading())
        self.reader.script(ADDRESS_B, make_reading())
        daemon = FlowercareDaemon(make_config(tmp_path), reader=self.reader,
                                  production_logger=self.production_logger)

        task = asyncio.create_task(daemon.start(install_signal_handlers=False))
        await wait_until(lambda: daemon.get_status()['running'])

        with pytest.raises(FlowercareDaemonError):
            await daemon.start(install_signal_handlers=False)

        daemon.request_shutdown()
        await asyncio.wait_for(task, timeout=15)

    def test_status_before_start(self, tmp_path):
        daemon = FlowercareDaemon(make_config(tmp_path), reader=self.reader,
                                  production_logger=self.production_logger)

        status = daemon.get_status()

        assert status['running'] is False
        assert status['updater'] is None
        assert status['sensors'] == 0
