"""Update scheduling core: sensor store, backoff policy and update loop."""

from .backoff import BackoffPolicy
from .scheduler import QueueEntry, SensorState, Updater
from .store import NoDataError, SensorRecord, SensorStore, SensorStoreError, UnknownSensorError

__all__ = [
    "BackoffPolicy",
    "QueueEntry",
    "SensorState",
    "Updater",
    "NoDataError",
    "SensorRecord",
    "SensorStore",
    "SensorStoreError",
    "UnknownSensorError",
]
