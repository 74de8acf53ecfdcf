"""Shared helpers for CLI commands."""
from __future__ import annotations

import dataclasses
import json
import sys
from pathlib import Path
from typing import Any, Optional

# Ensure project root is on sys.path (fallback for development mode)
try:
    import catalog_search.config  # noqa: F401
except ImportError:
    ROOT_DIR = Path(__file__).resolve().parent.parent
    if str(ROOT_DIR) not in sys.path:
        sys.path.insert(0, str(ROOT_DIR))

from catalog_search.config import Settings, get_config


def resolve_settings(db_path: Optional[str] = None) -> Settings:
    """Environment settings, with the catalog path overridden by ``--db``."""
    settings = get_config()
    if db_path:
        settings = dataclasses.replace(settings, db_path=str(Path(db_path).expanduser()))
    return settings


def open_coordinator(db_path: Optional[str] = None):
    """Build the index once for a one-shot command (no watcher, no schedule)."""
    from catalog_search.refresh_core.coordinator import RefreshCoordinator

    coordinator = RefreshCoordinator.from_settings(resolve_settings(db_path))
    coordinator.init()
    return coordinator


def output_json(data: Any) -> None:
    """Write JSON to stdout (single place for all commands)."""
    json.dump(data, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
