"""Misc utilities shared across refresh_core modules."""

from __future__ import annotations

from typing import Type

from watchdog.observers import Observer

from catalog_search.logger import get_logger

LOGGER = get_logger(__name__)


def create_observer(use_polling: bool, observer_cls: Type[Observer] = Observer) -> Observer:
    """Create a watchdog observer based on configuration.

    Polling is the reliable choice on network shares and container volume
    mounts, where native change notifications are often not delivered.
    """
    if use_polling:
        from watchdog.observers.polling import PollingObserver

        LOGGER.info("Using polling observer for catalog file events")
        return PollingObserver()
    return observer_cls()


__all__ = ["create_observer"]
