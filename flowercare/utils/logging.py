"""
Logging configuration for the Flower Care Exporter.
Sets up console/file handlers once at startup and hands out the component
loggers that are injected into the exporter's components.
"""

import logging
import logging.handlers
import sys
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Deque, Dict, Optional, Union
import colorlog
import psutil


COMPONENT_LOGGERS = (
    'flowercare.daemon',
    'flowercare.ble',
    'flowercare.updater',
    'flowercare.metrics',
    'flowercare.performance',
)

# Samples kept per performance metric
HISTORY_SIZE = 1000


class ProductionLogger:
    """
    Logging setup for the exporter: colored console output, optional rotating
    log files, and per-component loggers.
    """

    def __init__(self,
                 app_name: str = "flowercare_exporter",
                 log_dir: Optional[Union[str, Path]] = None,
                 log_level: str = "INFO",
                 max_file_size: int = 10 * 1024 * 1024,  # 10MB
                 backup_count: int = 5,
                 enable_console: bool = True):

        self.app_name = app_name
        self.log_dir = Path(log_dir) if log_dir else None
        self.log_level = getattr(logging, log_level.upper())
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.enable_console = enable_console

        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_root_logger()
        self._setup_component_loggers()

    def _setup_root_logger(self):
        """Configure root logger with console and file handlers."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)

        # Clear existing handlers
        root_logger.handlers.clear()

        if self.enable_console:
            console_handler = colorlog.StreamHandler(sys.stderr)
            console_handler.setLevel(self.log_level)
            console_formatter = colorlog.ColoredFormatter(
                '%(log_color)s%(asctime)s [%(levelname)8s] %(name)s: %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                log_colors={
                    'DEBUG': 'cyan',
                    'INFO': 'green',
                    'WARNING': 'yellow',
                    'ERROR': 'red',
                    'CRITICAL': 'red,bg_white',
                }
            )
            console_handler.setFormatter(console_formatter)
            root_logger.addHandler(console_handler)

        if self.log_dir is not None:
            file_handler = logging.handlers.RotatingFileHandler(
                self.log_dir / f"{self.app_name}.log",
                maxBytes=self.max_file_size,
                backupCount=self.backup_count
            )
            file_handler.setLevel(self.log_level)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s [%(levelname)8s] %(name)s [%(process)d:%(thread)d] %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            root_logger.addHandler(file_handler)

    def _setup_component_loggers(self):
        """Configure the component loggers; BLE traffic also gets its own file."""
        for name in COMPONENT_LOGGERS:
            logging.getLogger(name).setLevel(self.log_level)

        if self.log_dir is None:
            return

        ble_logger = logging.getLogger('flowercare.ble')
        ble_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / "ble.log",
            maxBytes=self.max_file_size,
            backupCount=self.backup_count
        )
        ble_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] BLE: %(message)s'
        ))
        ble_logger.addHandler(ble_handler)

    def get_logger(self, name: str = None) -> logging.Logger:
        """Get a logger instance."""
        if name:
            return logging.getLogger(name)
        return logging.getLogger()


class PerformanceMonitor:
    """
    Performance monitoring of BLE reads and process resources.
    """

    def __init__(self, logger=None):
        self.logger = logger or logging.getLogger('flowercare.performance')
        self.metrics: Dict[str, Deque[dict]] = {
            'sensor_reads': deque(maxlen=HISTORY_SIZE),
            'memory_usage': deque(maxlen=HISTORY_SIZE),
            'cpu_usage': deque(maxlen=HISTORY_SIZE)
        }
        self.start_time = datetime.now()

    def log_sensor_read(self, address: str, duration: float, success: bool):
        """Log the outcome of one BLE read."""
        self.metrics['sensor_reads'].append({
            'address': address,
            'duration': duration,
            'success': success,
            'timestamp': datetime.now()
        })

        self.logger.debug(
            f"SENSOR_READ address={address} duration={duration:.2f}s success={success}"
        )

    def log_system_resources(self):
        """Log current system resource usage."""
        try:
            process = psutil.Process()

            memory_info = process.memory_info()
            cpu_percent = process.cpu_percent()

            self.metrics['memory_usage'].append({
                'rss': memory_info.rss,
                'vms': memory_info.vms,
                'timestamp': datetime.now()
            })

            self.metrics['cpu_usage'].append({
                'cpu_percent': cpu_percent,
                'timestamp': datetime.now()
            })

            self.logger.info(
                f"RESOURCES memory_rss={memory_info.rss/1024/1024:.1f}MB "
                f"memory_vms={memory_info.vms/1024/1024:.1f}MB cpu={cpu_percent:.1f}%"
            )

        except psutil.Error as e:
            self.logger.error(f"Failed to log system resources: {e}")

    def get_performance_summary(self) -> dict:
        """Generate performance summary of the BLE reads seen so far."""
        reads = self.metrics['sensor_reads']
        successful = [read for read in reads if read['success']]

        summary = {
            'uptime_seconds': (datetime.now() - self.start_time).total_seconds(),
            'sensor_reads': {
                'total': len(reads),
                'successful': len(successful),
                'failed': len(reads) - len(successful),
                'avg_duration': 0.0,
            }
        }

        if successful:
            summary['sensor_reads']['avg_duration'] = sum(read['duration'] for read in successful) / len(successful)

        return summary

    def record_metric(self, metric_name: str, value: float):
        """Record a metric value."""
        if metric_name not in self.metrics:
            self.metrics[metric_name] = deque(maxlen=HISTORY_SIZE)

        self.metrics[metric_name].append({
            'value': value,
            'timestamp': datetime.now()
        })

        self.logger.debug(f"METRIC {metric_name}={value}")


def setup_logging(config) -> ProductionLogger:
    """
    Setup logging for the exporter using configuration.

    Args:
        config: Configuration instance

    Returns:
        ProductionLogger instance
    """
    return ProductionLogger(
        log_level=config.log_level,
        log_dir=config.log_dir,
        max_file_size=config.log_max_file_size,
        backup_count=config.log_backup_count,
        enable_console=config.log_enable_console
    )
