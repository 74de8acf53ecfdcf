"""Owner of the current index generation and everything that replaces it.

All rebuilds funnel through :meth:`RefreshCoordinator.check_and_reload_if_changed`
(or the unconditional :meth:`RefreshCoordinator.reload`). Three triggers feed
it: debounced watchdog events on the catalog file, an hourly schedule, and
the query path itself. Rebuilds are serialized; a trigger that arrives while
one is running waits for it and then re-checks the signature, so it only
rebuilds again if the file moved on in the meantime.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional

from watchdog.observers import Observer

from catalog_search.config import Settings, get_config
from catalog_search.index_core import (
    IndexGeneration,
    SourceSignature,
    build_generation,
    read_signature,
)
from catalog_search.index_core.ancestry import DEFAULT_MAX_DEPTH
from catalog_search.logger import CatalogSearchError, IndexNotReadyError, get_logger
from catalog_search.refresh_core.handler import SourceFileHandler
from catalog_search.refresh_core.queue import DEFAULT_DELAY_SECS, ChangeQueue
from catalog_search.refresh_core.schedule import HourlySchedule
from catalog_search.refresh_core.utils import create_observer

logger = get_logger(__name__)

Builder = Callable[..., IndexGeneration]


class RefreshCoordinator:
    """Builds, publishes and retires index generations for one catalog file."""

    def __init__(
        self,
        source_path: str | Path,
        exclude_patterns: Iterable[str] = (),
        *,
        min_file_size: int = 0,
        max_depth: int = DEFAULT_MAX_DEPTH,
        debounce_secs: float = DEFAULT_DELAY_SECS,
        use_polling: bool = False,
        nightly_refresh_hour: int = 0,
        builder: Builder = build_generation,
    ):
        self.source_path = str(source_path)
        self.exclude_patterns: List[str] = list(exclude_patterns)
        self.min_file_size = min_file_size
        self.max_depth = max_depth
        self.debounce_secs = debounce_secs
        self.use_polling = use_polling
        self.nightly_refresh_hour = nightly_refresh_hour
        self._builder = builder

        self._slot_lock = threading.Lock()
        self._reload_lock = threading.Lock()
        self._current: Optional[IndexGeneration] = None
        self._signature: Optional[SourceSignature] = None
        self._last_reload_time: Optional[datetime] = None
        self._generation_number = 0
        self._closed = False

        self._queue: Optional[ChangeQueue] = None
        self._observer: Optional[Observer] = None
        self._schedule: Optional[HourlySchedule] = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RefreshCoordinator":
        return cls(
            settings.db_path,
            settings.exclude_patterns,
            min_file_size=settings.min_file_size,
            max_depth=settings.max_ancestry_depth,
            debounce_secs=settings.debounce_secs,
            use_polling=settings.watch_use_polling,
            nightly_refresh_hour=settings.nightly_refresh_hour,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Generation slot
    # ------------------------------------------------------------------
    @property
    def current(self) -> Optional[IndexGeneration]:
        return self._current

    @property
    def last_reload_time(self) -> Optional[datetime]:
        return self._last_reload_time

    @property
    def generation_number(self) -> int:
        return self._generation_number

    @contextmanager
    def reading(self) -> Iterator[IndexGeneration]:
        """Pin the current generation for the duration of one query."""
        with self._slot_lock:
            generation = self._current
            if generation is None:
                raise IndexNotReadyError("Search index has not been built yet")
            generation.acquire()
        try:
            yield generation
        finally:
            generation.release()

    def _publish(self, generation: IndexGeneration) -> bool:
        """Swap ``generation`` in; a closed coordinator retires it instead."""
        with self._slot_lock:
            if self._closed:
                previous, published = generation, False
            else:
                previous, published = self._current, True
                self._current = generation
                self._signature = generation.signature
                self._last_reload_time = datetime.now(timezone.utc)
                self._generation_number += 1
        if previous is not None:
            previous.retire()
        return published

    # ------------------------------------------------------------------
    # Rebuilds
    # ------------------------------------------------------------------
    def _build(self) -> IndexGeneration:
        return self._builder(
            self.source_path,
            self.exclude_patterns,
            min_file_size=self.min_file_size,
            max_depth=self.max_depth,
        )

    def init(self) -> IndexGeneration:
        """Build and publish the first generation; failures propagate."""
        with self._reload_lock:
            generation = self._build()
            self._publish(generation)
        logger.info(
            f"Search index ready: {generation.statistics.total_items} items from {self.source_path}"
        )
        return generation

    def has_source_changed(self) -> bool:
        """True when the catalog's (mtime, size) differs from the last build."""
        try:
            signature = read_signature(self.source_path)
        except CatalogSearchError as exc:
            logger.error(f"Error checking catalog modification time: {exc}")
            return False
        return signature != self._signature

    def reload(self, reason: str = "manual", raise_errors: bool = True) -> bool:
        """Rebuild unconditionally. Returns True when a generation was published."""
        with self._reload_lock:
            return self._rebuild_locked(reason, raise_errors)

    def check_and_reload_if_changed(self, reason: str = "check", raise_errors: bool = True) -> bool:
        """Rebuild only if the catalog changed since the last published build.

        Returns True when a new generation was published.
        """
        if self._current is not None and not self.has_source_changed():
            return False
        with self._reload_lock:
            # another trigger may have rebuilt while we waited
            if self._current is not None and not self.has_source_changed():
                return False
            return self._rebuild_locked(reason, raise_errors)

    def _rebuild_locked(self, reason: str, raise_errors: bool) -> bool:
        logger.info(f"Reloading search index ({reason})")
        try:
            generation = self._build()
        except CatalogSearchError as exc:
            if raise_errors:
                raise
            logger.error(
                f"Search index reload failed ({reason}); keeping previous index: {exc}",
                exc_info=True,
            )
            return False
        if not self._publish(generation):
            logger.info(f"Coordinator closed during reload ({reason}); discarding new index")
            return False
        logger.info(f"Database reloaded at {self._last_reload_time.isoformat()}")
        return True

    # ------------------------------------------------------------------
    # File watching
    # ------------------------------------------------------------------
    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    def _on_change_batch(self, paths: List[str]) -> None:
        if self._closed:
            return
        self.check_and_reload_if_changed(reason="watch", raise_errors=False)

    def notify_change(self) -> None:
        """Feed one change event into the debounce queue."""
        if self._queue is None:
            self._queue = ChangeQueue(self._on_change_batch, delay_secs=self.debounce_secs)
        self._queue.add(self.source_path)

    def start_watching(self, observer_cls=Observer) -> None:
        if self._observer is not None:
            return
        if self._queue is None:
            self._queue = ChangeQueue(self._on_change_batch, delay_secs=self.debounce_secs)
        handler = SourceFileHandler(self.source_path, self._queue)
        observer = create_observer(self.use_polling, observer_cls=observer_cls)
        observer.schedule(handler, handler.watch_dir, recursive=False)
        observer.start()
        self._observer = observer
        logger.info(f"Watching {self.source_path} for changes")

    def stop_watching(self) -> None:
        observer = self._observer
        self._observer = None
        if observer is not None:
            observer.stop()
            observer.join()
        if self._queue is not None:
            self._queue.cancel()
        if observer is not None:
            logger.info("File watcher stopped")

    # ------------------------------------------------------------------
    # Scheduled refresh
    # ------------------------------------------------------------------
    @property
    def is_scheduled_refresh_active(self) -> bool:
        return self._schedule is not None and self._schedule.active

    def scheduled_refresh(self, now: datetime) -> bool:
        """Hourly sweep; the nightly hour forces a rebuild."""
        if now.hour == self.nightly_refresh_hour:
            return self.reload(reason="nightly", raise_errors=False)
        return self.check_and_reload_if_changed(reason="schedule", raise_errors=False)

    def schedule_hourly_refresh(self) -> None:
        if self._schedule is not None:
            self._schedule.stop()
        self._schedule = HourlySchedule(self.scheduled_refresh)
        self._schedule.start()
        logger.info(
            f"Scheduled hourly refresh check (full rebuild at {self.nightly_refresh_hour:02d}:00)"
        )

    def stop_scheduled_refresh(self) -> None:
        if self._schedule is not None:
            self._schedule.stop()
            self._schedule = None
            logger.info("Scheduled refresh stopped")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    def close(self) -> None:
        with self._slot_lock:
            self._closed = True
        self.stop_watching()
        self.stop_scheduled_refresh()
        with self._slot_lock:
            generation = self._current
            self._current = None
            self._signature = None
        if generation is not None:
            generation.retire()


# ----------------------------------------------------------------------
# Process-wide coordinator
# ----------------------------------------------------------------------
_coordinator: Optional[RefreshCoordinator] = None
_coordinator_lock = threading.Lock()


def init_coordinator(
    settings: Optional[Settings] = None,
    *,
    start_background: bool = True,
) -> RefreshCoordinator:
    """Create, build and register the process-wide coordinator.

    Replaces (and closes) any previously registered coordinator. With
    ``start_background`` the file watcher (if enabled) and the hourly
    schedule are started as well.
    """
    global _coordinator
    settings = settings or get_config()
    coordinator = RefreshCoordinator.from_settings(settings)
    coordinator.init()
    if start_background:
        if settings.watch_enabled:
            try:
                coordinator.start_watching()
            except OSError as exc:
                logger.warning(f"File watcher unavailable, relying on scheduled checks: {exc}")
        coordinator.schedule_hourly_refresh()
    with _coordinator_lock:
        previous = _coordinator
        _coordinator = coordinator
    if previous is not None:
        previous.close()
    return coordinator


def set_coordinator(coordinator: Optional[RefreshCoordinator]) -> None:
    """Register an externally built coordinator (or clear the slot)."""
    global _coordinator
    with _coordinator_lock:
        _coordinator = coordinator


def get_coordinator() -> RefreshCoordinator:
    """Return the process-wide coordinator, building it on first use."""
    global _coordinator
    with _coordinator_lock:
        if _coordinator is None:
            coordinator = RefreshCoordinator.from_settings(get_config())
            coordinator.init()
            _coordinator = coordinator
        return _coordinator


def close_coordinator() -> None:
    """Stop background tasks, release the index and clear the slot."""
    global _coordinator
    with _coordinator_lock:
        coordinator = _coordinator
        _coordinator = None
    if coordinator is not None:
        coordinator.close()


__all__ = [
    "RefreshCoordinator",
    "close_coordinator",
    "get_coordinator",
    "init_coordinator",
    "set_coordinator",
]
