"""Catalog/index inspection commands: status, inspect."""
from __future__ import annotations

import argparse

from cli.core import open_coordinator, output_json, resolve_settings


def cmd_status(args: argparse.Namespace) -> None:
    """Catalog file facts plus statistics of a freshly built index."""
    from catalog_search.search import get_db_status

    coordinator = open_coordinator(getattr(args, "db", None))
    try:
        status = get_db_status(coordinator=coordinator)
        report = coordinator.current.report
    finally:
        coordinator.close()
    output_json({
        "ok": True,
        **status.to_dict(),
        "build": {
            "candidates": report.candidates,
            "excludedByDirectory": report.excluded_by_directory,
            "rejectedPatterns": report.rejected_patterns,
            "elapsedMs": report.elapsed_ms,
        },
    })


def cmd_inspect(args: argparse.Namespace) -> None:
    """Dump the tables, columns and row counts of a catalog file.

    Works on any SQLite file, so it can be pointed at catalogs that fail
    to index to see what is actually in them.
    """
    from catalog_search.index_core.source import SourceStore

    settings = resolve_settings(getattr(args, "db", None))
    store = SourceStore(settings.db_path)
    store.open(require_tables=False)
    try:
        tables = store.table_summary()
    finally:
        store.close()
    output_json({"ok": True, "path": settings.db_path, "tables": tables})
