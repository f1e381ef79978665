"""
Configuration management for the Flower Care Exporter.
Loads configuration from environment variables with validation and defaults.
"""

import math
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union
from dotenv import load_dotenv
import logging


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


class InvalidRetryConfigError(ConfigurationError):
    """Raised when the retry/backoff parameters are out of range."""
    pass


# Shortest retry delay accepted for a sensor, in seconds
MIN_RETRY_DURATION = 30.0

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) and unit strings such as ``500ms``,
    ``30s``, ``2m`` or ``1h30m``.

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, (int, float)):
        seconds = float(value)
        if not math.isfinite(seconds):
            raise ValueError(f"invalid duration: {value!r}")
        return seconds

    text = value.strip().lower()
    if not text:
        raise ValueError("empty duration")

    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            raise ValueError(f"invalid duration: {value!r}")
        return seconds

    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ValueError(f"invalid duration: {value!r}")

    return total


def format_duration(seconds: float) -> str:
    """Render seconds as a short human readable duration (``2m30s``)."""
    if not math.isfinite(seconds):
        return str(seconds)
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"

    remaining = int(round(seconds))
    hours, remaining = divmod(remaining, 3600)
    minutes, secs = divmod(remaining, 60)

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return "".join(parts)


@dataclass(frozen=True)
class Sensor:
    """Identity of a Flower Care sensor."""
    address: str
    name: str = ""

    def __str__(self) -> str:
        if not self.name:
            return self.address
        return f"{self.name} ({self.address})"


def parse_sensor(value: str) -> Sensor:
    """
    Parse a sensor definition of the form ``name=MAC`` or ``MAC``.

    Raises:
        ConfigurationError: If the value is empty
    """
    value = value.strip()
    if not value:
        raise ConfigurationError("can not parse sensor: empty string")

    name, sep, address = value.partition("=")
    if not sep:
        return Sensor(address=name.strip().upper())

    address = address.strip()
    if not address:
        raise ConfigurationError(f"can not parse sensor {value!r}: missing address")

    return Sensor(address=address.upper(), name=name.strip())


def parse_sensor_list(value: str) -> List[Sensor]:
    """Parse a comma separated list of sensor definitions."""
    return [parse_sensor(item) for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class RetryConfig:
    """Parameters of the per-sensor retry backoff (seconds)."""
    min_duration: float = MIN_RETRY_DURATION
    max_duration: float = 30 * 60.0
    factor: float = 2.0

    def validate(self) -> None:
        """
        Check the retry parameters.

        Raises:
            InvalidRetryConfigError: If any parameter is out of range
        """
        # Checks are written so that NaN fails them
        if not (math.isfinite(self.min_duration) and self.min_duration >= MIN_RETRY_DURATION):
            raise InvalidRetryConfigError(
                f"minimum retry duration can not be lower than "
                f"{format_duration(MIN_RETRY_DURATION)}: {format_duration(self.min_duration)}"
            )

        if not (math.isfinite(self.max_duration) and self.max_duration >= self.min_duration):
            raise InvalidRetryConfigError(
                f"maximum retry duration ({format_duration(self.max_duration)}) can not be lower "
                f"than minimum ({format_duration(self.min_duration)})"
            )

        if not (math.isfinite(self.factor) and self.factor >= 1.0):
            raise InvalidRetryConfigError(f"retry factor needs to be at least 1: {self.factor}")


class Config:
    """
    Configuration manager that loads settings from environment variables.
    Provides validation and type conversion for configuration values.

    Values passed as ``overrides`` (usually from command line options) take
    precedence over the environment.
    """

    def __init__(self, env_file: Optional[Union[str, Path]] = None,
                 overrides: Optional[Dict[str, str]] = None):
        """
        Initialize configuration manager.

        Args:
            env_file: Path to .env file (defaults to .env in the working directory)
            overrides: Configuration values that replace environment values
        """
        self.logger = logging.getLogger(__name__)
        self._overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

        if env_file is None:
            env_file = Path.cwd() / ".env"

        if Path(env_file).exists():
            load_dotenv(env_file)
            self.logger.info(f"Loaded configuration from {env_file}")
        else:
            self.logger.debug(f"Environment file {env_file} not found, using system environment")

    def _lookup(self, key: str) -> Optional[str]:
        if key in self._overrides:
            return str(self._overrides[key])
        return os.getenv(key)

    def get_str(self, key: str, default: Optional[str] = None) -> str:
        """Get string configuration value."""
        value = self._lookup(key)
        if value is None:
            value = default
        if value is None:
            raise ConfigurationError(f"Required configuration key '{key}' not found")
        return value

    def get_int(self, key: str, default: Optional[int] = None) -> int:
        """Get integer configuration value."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be an integer, got '{value}'")

    def get_float(self, key: str, default: Optional[float] = None) -> float:
        """Get float configuration value."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be a float, got '{value}'")

    def get_bool(self, key: str, default: Optional[bool] = None) -> bool:
        """Get boolean configuration value."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        return value.lower() in ('true', '1', 'yes', 'on', 'enabled')

    def get_duration(self, key: str, default: Optional[Union[str, float]] = None) -> float:
        """Get duration configuration value in seconds."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            value = default

        try:
            return parse_duration(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be a duration, got '{value}'")

    def get_path(self, key: str, default: Optional[Union[str, Path]] = None) -> Optional[Path]:
        """Get path configuration value, None when unset and no default given."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                return None
            value = str(default)
        return Path(value).expanduser()

    # Sensors
    @property
    def sensors(self) -> List[Sensor]:
        return parse_sensor_list(self.get_str("FLOWERCARE_SENSORS", ""))

    # Exposition
    @property
    def listen_addr(self) -> str:
        return self.get_str("FLOWERCARE_LISTEN_ADDR", ":9294")

    @property
    def listen_host_port(self) -> tuple:
        """Split the listen address into (host, port)."""
        host, sep, port = self.listen_addr.rpartition(":")
        if not sep:
            raise ConfigurationError(f"Listen address must be host:port, got '{self.listen_addr}'")
        try:
            port_number = int(port)
        except ValueError:
            raise ConfigurationError(f"Listen port must be an integer, got '{port}'")
        if port_number < 0 or port_number > 65535:
            raise ConfigurationError("Listen port must be between 0 and 65535")
        return host.strip("[]") or "0.0.0.0", port_number

    # BLE Configuration
    @property
    def ble_adapter(self) -> str:
        return self.get_str("BLE_ADAPTER", "hci0")

    @property
    def ble_connect_timeout(self) -> float:
        return self.get_duration("BLE_CONNECT_TIMEOUT", "20s")

    # Update scheduling
    @property
    def refresh_interval(self) -> float:
        return self.get_duration("REFRESH_INTERVAL", "2m")

    @property
    def stale_after(self) -> float:
        return self.get_duration("STALE_AFTER", "5m")

    @property
    def update_tick_interval(self) -> float:
        return self.get_duration("UPDATE_TICK_INTERVAL", "10s")

    @property
    def cooldown_period(self) -> float:
        return self.get_duration("COOLDOWN_PERIOD", "30s")

    @property
    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            min_duration=self.get_duration("RETRY_MIN_DURATION", "30s"),
            max_duration=self.get_duration("RETRY_MAX_DURATION", "30m"),
            factor=self.get_float("RETRY_FACTOR", 2.0),
        )

    # Logging Configuration
    @property
    def log_level(self) -> str:
        return self.get_str("LOG_LEVEL", "INFO").upper()

    @property
    def log_dir(self) -> Optional[Path]:
        return self.get_path("LOG_DIR")

    @property
    def log_max_file_size(self) -> int:
        return self.get_int("LOG_MAX_FILE_SIZE", 10 * 1024 * 1024)  # 10MB

    @property
    def log_backup_count(self) -> int:
        return self.get_int("LOG_BACKUP_COUNT", 5)

    @property
    def log_enable_console(self) -> bool:
        return self.get_bool("LOG_ENABLE_CONSOLE", True)

    # Performance Monitoring
    @property
    def performance_log_interval(self) -> float:
        return self.get_duration("PERFORMANCE_LOG_INTERVAL", "5m")

    def validate_configuration(self) -> bool:
        """
        Validate all configuration values.

        Returns:
            bool: True if configuration is valid

        Raises:
            InvalidRetryConfigError: If the retry parameters are invalid
            ConfigurationError: If any other configuration is invalid
        """
        errors = []

        # Validate sensors and adapter
        try:
            if not self.sensors:
                errors.append("need to provide at least one sensor (FLOWERCARE_SENSORS)")
            if not self.ble_adapter:
                errors.append("need to provide a bluetooth device (BLE_ADAPTER)")
            if self.ble_connect_timeout <= 0:
                errors.append("BLE_CONNECT_TIMEOUT must be positive")
        except ConfigurationError as e:
            errors.append(str(e))

        # Validate intervals
        try:
            if self.refresh_interval <= 0:
                errors.append("REFRESH_INTERVAL must be positive")
            elif self.refresh_interval < 60:
                self.logger.warning(
                    f"Refresh durations below one minute are discouraged: "
                    f"{format_duration(self.refresh_interval)}"
                )
            if self.stale_after <= 0:
                errors.append("STALE_AFTER must be positive")
            if self.update_tick_interval <= 0:
                errors.append("UPDATE_TICK_INTERVAL must be positive")
            if self.cooldown_period < 0:
                errors.append("COOLDOWN_PERIOD can not be negative")
        except ConfigurationError as e:
            errors.append(str(e))

        # Validate listen address
        try:
            self.listen_host_port
        except ConfigurationError as e:
            errors.append(str(e))

        # Validate log level
        try:
            valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
            if self.log_level not in valid_levels:
                errors.append(f"LOG_LEVEL must be one of {valid_levels}")
        except ConfigurationError as e:
            errors.append(str(e))

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors))

        # Invalid retry settings are reported on their own, they keep the updater from starting
        self.retry_config.validate()

        return True

    def get_summary(self) -> dict:
        """Get configuration summary for logging/debugging."""
        retry = self.retry_config
        return {
            'sensors': [str(sensor) for sensor in self.sensors],
            'exposition': {
                'listen_addr': self.listen_addr,
                'stale_after': format_duration(self.stale_after),
            },
            'ble': {
                'adapter': self.ble_adapter,
                'connect_timeout': format_duration(self.ble_connect_timeout),
            },
            'updater': {
                'refresh_interval': format_duration(self.refresh_interval),
                'tick_interval': format_duration(self.update_tick_interval),
                'cooldown_period': format_duration(self.cooldown_period),
                'retry_min': format_duration(retry.min_duration),
                'retry_max': format_duration(retry.max_duration),
                'retry_factor': retry.factor,
            },
            'logging': {
                'level': self.log_level,
                'dir': str(self.log_dir) if self.log_dir else None,
                'enable_console': self.log_enable_console,
            },
        }
