"""
Exporter daemon for the Flower Care Exporter.
Wires configuration, BLE reader, update loop and metrics endpoint together
and runs them until a shutdown signal arrives.
"""

import asyncio
import signal
import threading
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional

import psutil

from .. import __build_date__, __commit__, __version__
from ..ble.miflora import MifloraReader
from ..metrics.collector import FlowercareCollector, create_registry
from ..metrics.server import MetricsServer, MetricsServerError
from ..updater.backoff import BackoffPolicy
from ..updater.scheduler import Updater
from ..updater.store import SensorStore
from ..utils.config import Config, ConfigurationError, format_duration
from ..utils.logging import PerformanceMonitor, ProductionLogger, setup_logging


@dataclass
class DaemonStats:
    """Daemon statistics container."""
    start_time: datetime
    uptime_seconds: int = 0
    refresh_cycles: int = 0
    update_attempts: int = 0
    update_failures: int = 0
    last_refresh_time: Optional[datetime] = None
    memory_usage_mb: Optional[float] = None
    cpu_usage_percent: Optional[float] = None


class FlowercareDaemonError(Exception):
    """Base exception for daemon operations."""
    pass


class FlowercareDaemon:
    """
    Long running exporter process.

    Tasks:
    - refresh loop: schedules every sensor once per refresh interval
    - update loop: reads due sensors one at a time (owns the radio)
    - statistics loop: periodic resource and update statistics

    A single stop event ends all loops; SIGINT/SIGTERM set it.
    """

    def __init__(self, config: Config, reader=None,
                 production_logger: Optional[ProductionLogger] = None):
        """
        Initialize daemon.

        Args:
            config: Validated or unvalidated configuration
            reader: BLE reader to use instead of a ``MifloraReader``
            production_logger: Logging setup to use instead of configuring one
        """
        self.config = config
        self.production_logger = production_logger
        self.logger = None
        self.performance_monitor: Optional[PerformanceMonitor] = None
        self.reader = reader
        self.store: Optional[SensorStore] = None
        self.updater: Optional[Updater] = None
        self.collector: Optional[FlowercareCollector] = None
        self.metrics_server: Optional[MetricsServer] = None

        # Daemon state
        self._running = False
        self._stop_event = asyncio.Event()
        self._refresh_task: Optional[asyncio.Task] = None
        self._update_task: Optional[asyncio.Task] = None
        self._stats_task: Optional[asyncio.Task] = None

        self._stats = DaemonStats(start_time=datetime.now())

    def _initialize_components(self):
        """Initialize all daemon components."""
        # Invalid configuration (including retry settings) keeps the daemon from starting
        self.config.validate_configuration()

        if self.production_logger is None:
            self.production_logger = setup_logging(self.config)
        self.logger = self.production_logger.get_logger('flowercare.daemon')
        self.performance_monitor = PerformanceMonitor(
            self.production_logger.get_logger('flowercare.performance')
        )

        backoff = BackoffPolicy(self.config.retry_config)

        self.store = SensorStore(self.production_logger.get_logger('flowercare.updater'))
        for sensor in self.config.sensors:
            self.logger.info(f"Sensor: {sensor}")
            self.store.register(sensor)

        if self.reader is None:
            self.logger.info(f"Bluetooth Device: {self.config.ble_adapter}")
            self.reader = MifloraReader(
                self.config.ble_adapter,
                self.production_logger.get_logger('flowercare.ble'),
                self.performance_monitor,
                connect_timeout=self.config.ble_connect_timeout
            )

        self.updater = Updater(
            self.reader,
            self.store,
            backoff,
            self.production_logger.get_logger('flowercare.updater'),
            self.performance_monitor,
            tick_interval=self.config.update_tick_interval,
            cooldown=self.config.cooldown_period
        )

        metrics_logger = self.production_logger.get_logger('flowercare.metrics')
        self.collector = FlowercareCollector(
            self.store.get_latest,
            self.store.sensors(),
            self.config.stale_after,
            metrics_logger
        )
        host, port = self.config.listen_host_port
        registry = create_registry(self.collector, __version__, __commit__, __build_date__)
        self.metrics_server = MetricsServer(host, port, registry, metrics_logger)

        self.logger.debug(f"Daemon components initialized ({backoff})")

    def _setup_signal_handlers(self):
        """Set up signal handlers for graceful shutdown."""
        if threading.current_thread() is not threading.main_thread():
            return

        loop = asyncio.get_running_loop()

        def signal_handler(signum, frame):
            """Handle shutdown signals."""
            signal_name = signal.Signals(signum).name
            self.logger.info(f"Received {signal_name}, initiating graceful shutdown...")
            loop.call_soon_threadsafe(self._stop_event.set)

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    def request_shutdown(self):
        """Ask all loops to stop."""
        self._stop_event.set()

    async def _wait_or_stop(self, timeout: float) -> bool:
        """Sleep for ``timeout`` seconds; True if the stop event fired meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def _refresh(self):
        self.logger.debug(f"Updating all at {datetime.now()}")
        self.updater.update_all()
        self._stats.refresh_cycles += 1
        self._stats.last_refresh_time = datetime.now()

    async def _refresh_loop(self):
        """Schedule all sensors now and then once per refresh interval."""
        self.logger.debug(f"Refresh loop ready ({format_duration(self.config.refresh_interval)}).")
        self._refresh()
        while not await self._wait_or_stop(self.config.refresh_interval):
            self._refresh()
        self.logger.debug("Shutting down refresh loop")

    async def _statistics_loop(self):
        """Periodically log update statistics and process resources."""
        interval = self.config.performance_log_interval
        while not await self._wait_or_stop(interval):
            self._update_statistics()
            self.performance_monitor.log_system_resources()
            stats = self.updater.get_statistics()
            self.logger.info(
                f"Update statistics: attempts={stats['attempts']} failures={stats['failures']} "
                f"queued={stats['queued']}"
            )
            reads = self.performance_monitor.get_performance_summary()['sensor_reads']
            self.logger.info(
                f"BLE reads: total={reads['total']} failed={reads['failed']} "
                f"avg_duration={reads['avg_duration']:.2f}s"
            )

    def _update_statistics(self):
        self._stats.uptime_seconds = int((datetime.now() - self._stats.start_time).total_seconds())
        if self.updater is not None:
            stats = self.updater.get_statistics()
            self._stats.update_attempts = stats['attempts']
            self._stats.update_failures = stats['failures']
        try:
            process = psutil.Process()
            self._stats.memory_usage_mb = process.memory_info().rss / 1024 / 1024
            self._stats.cpu_usage_percent = process.cpu_percent()
        except psutil.Error as e:
            self.logger.debug(f"Could not read process statistics: {e}")

    def get_status(self) -> Dict[str, Any]:
        """Get current daemon status."""
        self._update_statistics()
        return {
            "running": self._running,
            "shutdown_requested": self._stop_event.is_set(),
            "stats": asdict(self._stats),
            "updater": self.updater.get_statistics() if self.updater else None,
            "sensors": len(self.store) if self.store else 0,
        }

    def get_statistics(self) -> DaemonStats:
        """Get daemon statistics."""
        return self._stats

    async def start(self, install_signal_handlers: bool = True):
        """
        Start the daemon and run until shutdown.

        Raises:
            ConfigurationError: If the configuration is invalid
            FlowercareDaemonError: If the daemon can not be started or one of
                its loops ends without a shutdown request
        """
        if self._running:
            raise FlowercareDaemonError("Daemon is already running")

        try:
            self._initialize_components()
        except ConfigurationError:
            raise
        except Exception as e:
            raise FlowercareDaemonError(f"Initialization failed: {e}") from e

        try:
            self.metrics_server.start()
        except MetricsServerError as e:
            self.logger.error(f"Failed to start metrics endpoint: {e}")
            raise FlowercareDaemonError(f"Startup failed: {e}") from e

        if install_signal_handlers:
            self._setup_signal_handlers()

        self._running = True
        self._refresh_task = asyncio.create_task(self._refresh_loop(), name="refresh-loop")
        self._update_task = asyncio.create_task(self.updater.run(self._stop_event), name="update-loop")
        self._stats_task = asyncio.create_task(self._statistics_loop(), name="statistics-loop")

        self.logger.info("Exporter is started.")
        stop_waiter = asyncio.create_task(self._stop_event.wait(), name="stop-waiter")
        done, _ = await asyncio.wait(
            {stop_waiter, self._refresh_task, self._update_task, self._stats_task},
            return_when=asyncio.FIRST_COMPLETED
        )
        stop_waiter.cancel()
        await asyncio.gather(stop_waiter, return_exceptions=True)

        # A loop that ends without a shutdown request leaves the exporter without updates
        ended = [task for task in done if task is not stop_waiter]
        if ended and not self._stop_event.is_set():
            for task in ended:
                self.logger.error(f"Task {task.get_name()} ended unexpectedly: {self._describe_end(task)}")
            await self.stop()
            raise FlowercareDaemonError(
                f"{', '.join(task.get_name() for task in ended)} stopped unexpectedly"
            )

        await self.stop()

    @staticmethod
    def _describe_end(task: asyncio.Task) -> str:
        if task.cancelled():
            return "cancelled"
        if task.exception() is not None:
            return repr(task.exception())
        return "returned"

    async def stop(self):
        """Stop the daemon gracefully."""
        if not self._running:
            return

        self.logger.info("Stopping exporter...")
        self._stop_event.set()
        self._running = False

        tasks = [task for task in (self._refresh_task, self._update_task, self._stats_task) if task]
        done, pending = await asyncio.wait(tasks, timeout=10)
        for task in pending:
            self.logger.warning(f"Task {task.get_name()} did not stop in time, cancelling")
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                self.logger.error(f"Task {task.get_name()} failed: {task.exception()}")

        if self.metrics_server:
            self.metrics_server.stop()

        self.logger.info("Shutdown complete.")


async def run_daemon(config: Config):
    """Run the daemon until it is signalled to stop."""
    daemon = FlowercareDaemon(config)
    await daemon.start()
