"""Fixed-rate repeating timer on a daemon thread."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class PollTimer(Protocol):
    """What the watcher needs from a timer."""

    def start(self) -> None: ...

    def stop(self) -> None: ...


class RepeatingTimer:
    """Calls a function every `interval` seconds until stopped.

    The first call happens one full interval after start(). Ticks are
    scheduled against a fixed cadence, so a slow callback delays the next
    call but does not shift the ones after it. Ticks that fall due while a
    call is still running are dropped, not queued.

    The thread is a daemon: a running timer never keeps the process alive.
    """

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        """Initialize the timer.

        Args:
            interval: Seconds between calls. Must be positive.
            callback: Function to call on every tick.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = interval
        self._callback = callback
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def interval(self) -> float:
        """Get the interval in seconds."""
        return self._interval

    @property
    def is_running(self) -> bool:
        """Check if the timer thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start ticking. Calling start() on a running timer does nothing."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="RepeatingTimer", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop ticking. No call starts after this returns.

        Args:
            timeout: Seconds to wait for an in-progress call to finish.
                None returns without waiting.
        """
        self._stop_event.set()
        thread = self._thread
        if timeout is not None and thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _run(self) -> None:
        next_tick = time.monotonic() + self._interval
        while not self._stop_event.wait(max(0.0, next_tick - time.monotonic())):
            try:
                self._callback()
            except Exception:
                logger.exception("Timer callback failed")
            now = time.monotonic()
            next_tick += self._interval
            if next_tick <= now:
                # Skip ticks missed while the callback was running
                missed = int((now - next_tick) // self._interval) + 1
                next_tick += missed * self._interval
