"""
Repeating timers for background checks.

Usage:
    from portal.utils.timers import schedule, cancel

    handle = schedule(check_inactivity, 60000)
    ...
    cancel(handle)
"""

import threading
import time
from typing import Callable, Optional

from portal.utils.structured_logger import get_logger

logger = get_logger(__name__)


def now_ms() -> int:
    """Wall clock in milliseconds since the epoch"""
    return int(time.time() * 1000)


class RepeatingTimer:
    """Calls a function every interval_ms on a daemon thread until cancelled."""

    def __init__(self, interval_ms: int, callback: Callable[[], None], name: str = "repeating-timer"):
        self.interval_ms = interval_ms
        self.callback = callback
        self.name = name
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped.is_set()

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def cancel(self):
        self._stopped.set()

    def _run(self):
        interval_s = self.interval_ms / 1000.0
        while not self._stopped.wait(interval_s):
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Timer [{self.name}] tick failed: {e}", exc_info=True)


def schedule(callback: Callable[[], None], interval_ms: int) -> RepeatingTimer:
    """Start a repeating timer and return its handle"""
    timer = RepeatingTimer(interval_ms, callback, name=getattr(callback, '__name__', 'repeating-timer'))
    timer.start()
    return timer


def cancel(handle: Optional[RepeatingTimer]) -> None:
    """Stop a timer returned by schedule(). Safe to call with None."""
    if handle is not None:
        handle.cancel()
