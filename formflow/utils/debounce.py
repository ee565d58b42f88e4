"""
Single-slot debounce timer.

Each coordinator owns one DebounceTimer. schedule() cancels whatever is
pending and starts over, so at most one callback is ever outstanding per
owner and separate owners cannot interfere with each other.

The timer factory is injectable: production uses threading.Timer, tests pass
a fake whose timers are fired by hand.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class DebounceTimer:
    """Cancel-then-reschedule timer handle."""

    def __init__(self, delay: float, callback: Callable[[], None],
                 timer_factory: Optional[Callable] = None):
        """
        Args:
            delay: Seconds to wait after the last schedule() call
            callback: Invoked once the delay elapses without a reschedule
            timer_factory: threading.Timer-compatible constructor
        """
        self.delay = delay
        self._callback = callback
        self._factory = timer_factory or threading.Timer
        self._lock = threading.Lock()
        self._handle = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._handle is not None

    def schedule(self) -> None:
        """(Re)start the countdown."""
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._generation += 1
            generation = self._generation
            handle = self._factory(self.delay, lambda: self._fire(generation))
            if hasattr(handle, "daemon"):
                handle.daemon = True
            self._handle = handle
        handle.start()

    def cancel(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._handle = None
            self._generation += 1

    def _fire(self, generation: int) -> None:
        with self._lock:
            # A reschedule or cancel happened after this timer was started
            if generation != self._generation:
                return
            self._handle = None

        try:
            self._callback()
        except Exception as e:
            logger.error(f"Debounced callback failed: {e}")
            raise
