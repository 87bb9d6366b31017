"""Watch module - Polling change detection."""

from azure_venv.watch.timer import PollTimer, RepeatingTimer
from azure_venv.watch.watcher import BlobWatcher, TimerFactory, WatchHandle

__all__ = [
    "BlobWatcher",
    "PollTimer",
    "RepeatingTimer",
    "TimerFactory",
    "WatchHandle",
]
