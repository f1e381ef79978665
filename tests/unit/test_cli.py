"""
Unit tests for the command line interface.
"""

import pytest
from unittest.mock import AsyncMock, Mock, patch

from click.testing import CliRunner

from flowercare.ble.miflora import ReadError
from flowercare.cli.commands import build_config, cli
from flowercare.utils.config import Sensor
from tests.fixtures.sensor_data import make_reading


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def missing_env(tmp_path):
    return str(tmp_path / "missing.env")


class TestBuildConfig:
    """Test mapping of command line options onto configuration keys."""

    def test_options_override_environment(self, missing_env, monkeypatch):
        monkeypatch.setenv("BLE_ADAPTER", "hci0")

        config = build_config(
            env_file=missing_env,
            addr="127.0.0.1:9100",
            sensors=("basil=C4:7C:8D:6A:3E:11", "C4:7C:8D:6A:3E:22"),
            adapter="hci1",
            refresh_duration="10m",
            stale_duration="20m",
            retry_min="1m",
            retry_max="2h",
            retry_factor=1.5,
            cool_down_period="45s",
            log_level="debug",
        )

        assert config.listen_host_port == ("127.0.0.1", 9100)
        assert config.sensors == [
            Sensor(address="C4:7C:8D:6A:3E:11", name="basil"),
            Sensor(address="C4:7C:8D:6A:3E:22"),
        ]
        assert config.ble_adapter == "hci1"
        assert config.refresh_interval == 600.0
        assert config.stale_after == 1200.0
        assert config.retry_config.min_duration == 60.0
        assert config.retry_config.max_duration == 7200.0
        assert config.retry_config.factor == 1.5
        assert config.cooldown_period == 45.0
        assert config.log_level == "DEBUG"

    def test_unset_options_fall_back_to_environment(self, missing_env, monkeypatch):
        monkeypatch.setenv("BLE_ADAPTER", "hci2")

        config = build_config(env_file=missing_env, adapter=None, sensors=())

        assert config.ble_adapter == "hci2"


class TestCommands:
    """Test the click commands."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "flowercare-exporter" in result.output

    def test_config_valid(self, runner, missing_env):
        result = runner.invoke(
            cli, ["config", "--env-file", missing_env],
            env={"FLOWERCARE_SENSORS": "basil=C4:7C:8D:6A:3E:11", "LOG_LEVEL": None,
                 "RETRY_MIN_DURATION": None}
        )

        assert result.exit_code == 0
        assert "basil" in result.output

    def test_config_without_sensors(self, runner, missing_env):
        result = runner.invoke(cli, ["config", "--env-file", missing_env],
                               env={"FLOWERCARE_SENSORS": None})

        assert result.exit_code == 2

    def test_run_with_invalid_retry(self, runner, missing_env):
        result = runner.invoke(cli, [
            "run", "--env-file", missing_env,
            "-s", "C4:7C:8D:6A:3E:11", "--retry-min", "10s",
        ])

        assert result.exit_code == 2

    def test_read_prints_values(self, runner, missing_env):
        mock_reader = Mock()
        mock_reader.read_sensor = AsyncMock(return_value=make_reading(moisture=37))

        with patch('flowercare.cli.commands.setup_logging'), \
                patch('flowercare.cli.commands.MifloraReader', return_value=mock_reader):
            result = runner.invoke(cli, ["read", "c4:7c:8d:6a:3e:11", "--env-file", missing_env])

        assert result.exit_code == 0
        mock_reader.read_sensor.assert_awaited_once_with("C4:7C:8D:6A:3E:11")
        assert "37%" in result.output

    def test_read_failure(self, runner, missing_env):
        mock_reader = Mock()
        mock_reader.read_sensor = AsyncMock(side_effect=ReadError("C4:7C:8D:6A:3E:11", "error dialing"))

        with patch('flowercare.cli.commands.setup_logging'), \
                patch('flowercare.cli.commands.MifloraReader', return_value=mock_reader):
            result = runner.invoke(cli, ["read", "C4:7C:8D:6A:3E:11", "--env-file", missing_env])

        assert result.exit_code == 1
