"""
Update scheduler for Flower Care sensors.

A single task owns the BLE reader and works through a queue of pending
updates, one sensor at a time. Failed reads are re-queued with a growing
delay so that one unreachable sensor does not keep the radio busy.
"""

import asyncio
import itertools
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..ble.miflora import ReadError
from ..utils.config import Sensor, format_duration
from ..utils.logging import PerformanceMonitor
from .backoff import BackoffPolicy
from .store import SensorStore


class SensorState(Enum):
    """Update state of a single sensor."""
    IDLE = "idle"
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"


@dataclass(frozen=True)
class QueueEntry:
    """A pending update attempt for one sensor."""
    sensor: Sensor
    due_time: float
    last_retry_delay: float
    sequence: int

    @property
    def address(self) -> str:
        return self.sensor.address


class Updater:
    """
    Serializes BLE reads of all registered sensors.

    ``update_all`` is called by the refresh ticker, ``run`` is the update
    loop. The loop is the only caller of the reader and the only writer to
    the store. A read that never returns stalls every other sensor until the
    stop event is set; the radio can not serve two sensors at once. A
    ``tick`` that overlaps a running one returns without reading, and every
    attempt is followed by ``cooldown`` seconds of rest.
    """

    def __init__(self, reader, store: SensorStore, backoff: BackoffPolicy, logger,
                 performance_monitor: Optional[PerformanceMonitor] = None,
                 tick_interval: float = 10.0,
                 cooldown: float = 0.0,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize updater.

        Args:
            reader: Object with a ``read_sensor(address)`` coroutine
            store: Store receiving successful readings
            backoff: Retry delay policy for failed reads
            logger: Logger instance
            performance_monitor: Performance monitoring instance
            tick_interval: Seconds between two checks of the queue
            cooldown: Seconds the radio rests after every read attempt
            clock: Monotonic time source in seconds
        """
        self.reader = reader
        self.store = store
        self.backoff = backoff
        self.logger = logger
        self.performance_monitor = performance_monitor
        self.tick_interval = tick_interval
        self.cooldown = cooldown
        self._clock = clock

        self._queue: Dict[str, QueueEntry] = {}
        self._sequence = itertools.count()
        self._in_flight: Optional[str] = None
        self._busy = False
        self._stop_event: Optional[asyncio.Event] = None

        # Statistics
        self._attempts = 0
        self._failures = 0
        self._last_error: Optional[str] = None

    @property
    def in_flight(self) -> Optional[str]:
        """Address of the sensor currently being read, if any."""
        return self._in_flight

    def state(self, address: str) -> SensorState:
        """Return the update state of a sensor."""
        if self._in_flight == address:
            return SensorState.IN_FLIGHT
        if address in self._queue:
            return SensorState.QUEUED
        return SensorState.IDLE

    def pending(self) -> List[QueueEntry]:
        """Return the queued entries ordered by due time."""
        return sorted(self._queue.values(), key=lambda entry: (entry.due_time, entry.sequence))

    def get_entry(self, address: str) -> Optional[QueueEntry]:
        return self._queue.get(address)

    def _enqueue(self, sensor: Sensor, due_time: float, last_retry_delay: float):
        # One entry per address, the newest request wins
        self._queue[sensor.address] = QueueEntry(
            sensor=sensor,
            due_time=due_time,
            last_retry_delay=last_retry_delay,
            sequence=next(self._sequence)
        )

    def schedule_now(self, sensor: Sensor, now: Optional[float] = None):
        """Queue an immediate update of a sensor, resetting its backoff."""
        if now is None:
            now = self._clock()
        self._enqueue(sensor, now, 0.0)

    def schedule_retry(self, sensor: Sensor, previous_delay: float, now: float) -> float:
        """
        Queue a retry of a failed sensor.

        Returns:
            float: Delay in seconds until the retry is due
        """
        retry_after = self.backoff.next(previous_delay)
        self.logger.debug(f"Retrying {sensor} after {format_duration(retry_after)}")
        self._enqueue(sensor, now + retry_after, retry_after)
        return retry_after

    def update_all(self, now: Optional[float] = None):
        """Schedule an update for all registered sensors."""
        if now is None:
            now = self._clock()
        for sensor in self.store.sensors():
            self.schedule_now(sensor, now)

    def _pop_due(self, now: float) -> Optional[QueueEntry]:
        if not self._queue:
            return None
        self.logger.debug(f"Queue length: {len(self._queue)}")

        entry = min(self._queue.values(), key=lambda item: (item.due_time, item.sequence))
        wait = entry.due_time - now
        if wait > 0:
            self.logger.debug(f"Sensor {entry.sensor} is still waiting {format_duration(wait)}")
            return None

        del self._queue[entry.address]
        return entry

    async def tick(self, now: Optional[float] = None) -> bool:
        """
        Run the next due update, if any.

        Returns:
            bool: True if an update attempt was made
        """
        if now is None:
            now = self._clock()

        if self._stop_event is not None and self._stop_event.is_set():
            return False

        # The radio is taken by another read or still cooling down
        if self._busy:
            return False

        entry = self._pop_due(now)
        if entry is None:
            return False

        self.logger.debug(f"Queue item: {entry}")
        self._busy = True
        try:
            self._in_flight = entry.address
            self._attempts += 1
            try:
                await self._update_sensor(entry)
            except ReadError as e:
                self._handle_failure(entry, e, now)
            except Exception as e:
                self.logger.exception(f"Unexpected error updating sensor {entry.sensor}")
                self._handle_failure(entry, e, now)
            finally:
                self._in_flight = None

            await self._cool_down()
        finally:
            self._busy = False

        return True

    async def _cool_down(self):
        """Let the radio rest before the next read; ends early when stopping."""
        if self.cooldown <= 0:
            return

        self.logger.debug(f"Cooling down for {format_duration(self.cooldown)}")
        if self._stop_event is None:
            await asyncio.sleep(self.cooldown)
            return

        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.cooldown)
        except asyncio.TimeoutError:
            pass

    def _handle_failure(self, entry: QueueEntry, error: Exception, now: float):
        self._failures += 1
        self._last_error = str(error)
        self.logger.error(f"Error updating sensor {entry.sensor}: {error}")
        if self.performance_monitor is not None:
            self.performance_monitor.record_metric("sensor_update_failures", 1)
        if self._stop_event is None or not self._stop_event.is_set():
            self.schedule_retry(entry.sensor, entry.last_retry_delay, now)

    async def _update_sensor(self, entry: QueueEntry):
        start = time.monotonic()
        try:
            reading = await self._read(entry.address)
        finally:
            self.logger.debug(f"Updating {entry.sensor} took {format_duration(time.monotonic() - start)}")

        if reading is None:
            return

        self.store.set_latest(entry.address, reading)
        self.logger.info(f"Updated {entry.sensor}")

    async def _read(self, address: str):
        """Read a sensor, giving up when the stop event fires. Returns None when stopped."""
        if self._stop_event is None:
            return await self.reader.read_sensor(address)

        read_task = asyncio.ensure_future(self.reader.read_sensor(address))
        stop_task = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({read_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()

        if read_task.done():
            return read_task.result()

        self.logger.info(f"Aborting read of {address}, shutting down")
        read_task.cancel()
        try:
            await read_task
        except asyncio.CancelledError:
            pass
        except ReadError as e:
            self.logger.debug(f"Read of {address} failed while aborting: {e}")
        return None

    async def run(self, stop_event: asyncio.Event):
        """
        Update loop: check the queue every ``tick_interval`` seconds until
        ``stop_event`` is set. Pending entries are discarded on exit.
        """
        self._stop_event = stop_event
        self.logger.debug("Update loop ready.")
        try:
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.tick_interval)
                except asyncio.TimeoutError:
                    pass
                if stop_event.is_set():
                    break

                await self.tick()
        finally:
            dropped = len(self._queue)
            self._queue.clear()
            self.logger.debug(f"Shutting down updater, dropped {dropped} queued updates.")

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get updater statistics.

        Returns:
            Dict[str, Any]: Updater statistics
        """
        return {
            "attempts": self._attempts,
            "failures": self._failures,
            "queued": len(self._queue),
            "in_flight": self._in_flight,
            "last_error": self._last_error,
        }
