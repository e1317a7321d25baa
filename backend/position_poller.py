"""
Position Poller for AB Loop.

A single background thread that calls a tick function at a fixed rate.
PlaybackEngine uses it to push the playback position to the UI and to
enforce the A/B loop.

Ticks run strictly one after another on the poller thread. A slow tick delays
the next one but never causes a tick to be skipped.
"""

import time
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger("ABLoop.PositionPoller")


class PositionPoller:
    """
    Fixed-rate recurring task on a dedicated single worker thread.

    Usage:
        poller = PositionPoller(engine.sync_position, interval_ms=1000)
        poller.start()   # idempotent, only one thread per poller
        ...
        poller.stop()    # cancels pending ticks, lets an in-flight tick finish
    """

    def __init__(self, tick: Callable[[], object], interval_ms: int, name: str = "PositionPoller"):
        self._tick = tick
        self.interval = interval_ms / 1000.0
        self.name = name
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    def is_scheduled(self) -> bool:
        """True while the recurring task is alive and not cancelled."""
        with self._lock:
            return (
                self._thread is not None
                and self._thread.is_alive()
                and not self._stop_event.is_set()
            )

    def start(self) -> bool:
        """
        Schedule the recurring task if it is not already scheduled.

        Returns:
            True if a new thread was started, False if one was already running
        """
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                if not self._stop_event.is_set() or self._thread is threading.current_thread():
                    return False
            # A cancelled thread holds its own event and exits after its last tick
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name=self.name,
                daemon=True,
            )
            self._thread.start()
        logger.debug(f"Poller scheduled every {self.interval * 1000:.0f}ms")
        return True

    def stop(self, join: bool = True, timeout: Optional[float] = None) -> None:
        """
        Cancel the recurring task.

        Args:
            join: Wait for an in-flight tick to finish
            timeout: Max seconds to wait when joining
        """
        with self._lock:
            thread = self._thread
            self._stop_event.set()
        if thread is None:
            return
        if join and thread is not threading.current_thread():
            thread.join(timeout)
        logger.debug("Poller stopped")

    def _run(self, stop_event: threading.Event) -> None:
        logger.debug("Poller thread started")
        next_run = time.monotonic()

        while not stop_event.is_set():
            try:
                self._tick()
            except Exception as e:
                logger.error(f"Error in poller tick: {e}")

            next_run += self.interval
            delay = next_run - time.monotonic()
            if delay > 0:
                if stop_event.wait(delay):
                    break
            else:
                # Running late: go again straight away without dropping a tick
                continue

        logger.debug("Poller thread exiting")
