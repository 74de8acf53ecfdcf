"""Watchdog event handler that enqueues changes to the source catalog file."""

from __future__ import annotations

import os
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler

from catalog_search.logger import get_logger

LOGGER = get_logger(__name__)


def _normalize(path: str | Path) -> str:
    return os.path.normcase(os.path.abspath(os.fsdecode(path)))


class SourceFileHandler(FileSystemEventHandler):
    """Forwards events touching one file to a debounced queue.

    Watchdog observes directories, so the handler is scheduled on the
    catalog's parent directory and ignores every other file in it. Saves
    that replace the file through a rename arrive as moves onto the path.
    """

    def __init__(self, source_path: str | Path, queue):
        super().__init__()
        self.source_path = _normalize(source_path)
        self.queue = queue

    @property
    def watch_dir(self) -> str:
        return os.path.dirname(self.source_path)

    def _is_source(self, path) -> bool:
        if not path:
            return False
        return _normalize(path) == self.source_path

    def _maybe_enqueue(self, path) -> None:
        if self._is_source(path):
            LOGGER.debug(f"Catalog change event: {path}")
            self.queue.add(self.source_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._maybe_enqueue(event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._maybe_enqueue(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._maybe_enqueue(getattr(event, "dest_path", None))


__all__ = ["SourceFileHandler"]
