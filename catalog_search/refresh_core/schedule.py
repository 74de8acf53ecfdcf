"""Hourly safety-net schedule for catalog change checks."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from catalog_search.logger import get_logger

LOGGER = get_logger(__name__)


def seconds_until_next_hour(now: datetime) -> float:
    """Seconds from ``now`` to the next top of the hour (never zero)."""
    next_hour = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    return max((next_hour - now).total_seconds(), 0.001)


class HourlySchedule:
    """Runs ``callback(now)`` at the top of every hour until stopped.

    Each run re-arms a daemon timer for the following hour. Exceptions from
    the callback are logged and do not stop the schedule.
    """

    def __init__(
        self,
        callback: Callable[[datetime], None],
        *,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._callback = callback
        self._clock = clock
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        with self._lock:
            self._active = True
            self._arm_locked()

    def stop(self) -> None:
        with self._lock:
            self._active = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _arm_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        delay = seconds_until_next_hour(self._clock())
        self._timer = threading.Timer(delay, self._fire)
        self._timer.daemon = True
        self._timer.start()

    def run_once(self) -> None:
        """Invoke the callback now, logging instead of raising."""
        try:
            self._callback(self._clock())
        except Exception as exc:
            LOGGER.error(f"Error during scheduled refresh: {exc}", exc_info=True)

    def _fire(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._timer = None
        self.run_once()
        with self._lock:
            if self._active:
                self._arm_locked()


__all__ = ["HourlySchedule", "seconds_until_next_hour"]
