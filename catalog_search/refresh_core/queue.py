"""Debounced change queue used by the source watcher."""

from __future__ import annotations

import threading
from typing import Callable, Iterable, List, Set

from catalog_search.logger import get_logger

LOGGER = get_logger(__name__)

DEFAULT_DELAY_SECS = 0.5


class ChangeQueue:
    """Collects change notifications and flushes them after a debounce interval.

    Every :meth:`add` restarts the timer, so a burst of events results in a
    single callback ``delay_secs`` after the last one. Callbacks never run
    concurrently; events arriving while one runs are handed to a follow-up.
    """

    def __init__(self, process_cb: Callable[[List[str]], None], delay_secs: float = DEFAULT_DELAY_SECS):
        self._lock = threading.Lock()
        self._paths: Set[str] = set()
        self._pending: Set[str] = set()
        self._timer: threading.Timer | None = None
        self._process_cb = process_cb
        self._processing_lock = threading.Lock()
        self.delay_secs = max(0.0, float(delay_secs))

    @property
    def scheduled(self) -> bool:
        with self._lock:
            return self._timer is not None

    def add(self, path: str) -> None:
        with self._lock:
            self._paths.add(path)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay_secs, self._flush)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        """Drop queued events and any armed timer."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._paths.clear()
            self._pending.clear()

    def _flush(self) -> None:
        with self._lock:
            paths = sorted(self._paths)
            self._paths.clear()
            self._timer = None
            if not paths and not self._pending:
                return

        # Try to run the processor exclusively; if busy, queue and return
        if not self._processing_lock.acquire(blocking=False):
            with self._lock:
                self._pending.update(paths)
                if self._timer is None:
                    self._timer = threading.Timer(self.delay_secs, self._flush)
                    self._timer.daemon = True
                    self._timer.start()
            return
        try:
            todo: Iterable[str] = paths
            while True:
                batch = list(todo)
                try:
                    self._process_cb(batch)
                except Exception as exc:
                    LOGGER.error(
                        f"Processing change batch failed: {exc}",
                        extra={"error": str(exc), "batch_size": len(batch)},
                        exc_info=True,
                    )
                # drain any pending accumulated during processing
                with self._lock:
                    if not self._pending:
                        break
                    todo = sorted(self._pending)
                    self._pending.clear()
        finally:
            self._processing_lock.release()


__all__ = ["ChangeQueue", "DEFAULT_DELAY_SECS"]
