"""Watch command: keep the search index live on catalog changes (daemon mode)."""
from __future__ import annotations

import argparse
import sys
import time

from cli.core import resolve_settings


def cmd_watch(args: argparse.Namespace) -> None:
    """Build the index, then rebuild on file events and on the hourly schedule."""
    from watchdog.observers import Observer
    from catalog_search.logger import configure_logging
    from catalog_search.refresh_core.coordinator import RefreshCoordinator

    settings = resolve_settings(getattr(args, "db", None))
    configure_logging(settings.log_level, settings.log_format)
    coordinator = RefreshCoordinator.from_settings(settings)
    generation = coordinator.init()

    mode = "polling" if settings.watch_use_polling else "native"
    print(
        f"Watching {settings.db_path} ({generation.statistics.total_items} items, {mode} events)",
        file=sys.stderr,
    )
    coordinator.start_watching(observer_cls=Observer)
    coordinator.schedule_hourly_refresh()

    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        print("\nStopping watcher...", file=sys.stderr)
    finally:
        coordinator.close()
