"""Keeps the search index in step with the catalog file.

Modules:
- queue: debounced change queue
- handler: watchdog handler for the catalog file
- schedule: hourly safety-net timer
- utils: observer factory
- coordinator: generation ownership, rebuild triggers and the process-wide instance
"""

from catalog_search.refresh_core.coordinator import (
    RefreshCoordinator,
    close_coordinator,
    get_coordinator,
    init_coordinator,
    set_coordinator,
)

__all__ = [
    "RefreshCoordinator",
    "close_coordinator",
    "get_coordinator",
    "init_coordinator",
    "set_coordinator",
]
