"""Query commands: search, random."""
from __future__ import annotations

import argparse

from cli.core import open_coordinator, output_json


def cmd_search(args: argparse.Namespace) -> None:
    """Run one paginated search and print the response."""
    from catalog_search.search import execute_search

    coordinator = open_coordinator(getattr(args, "db", None))
    try:
        response = execute_search(
            args.query,
            limit=getattr(args, "limit", None),
            offset=getattr(args, "offset", None),
            coordinator=coordinator,
        )
    finally:
        coordinator.close()
    output_json({"ok": True, **response.to_dict()})


def cmd_random(args: argparse.Namespace) -> None:
    """Print one entry picked at random."""
    from catalog_search.search import execute_random

    coordinator = open_coordinator(getattr(args, "db", None))
    try:
        item = execute_random(coordinator=coordinator)
    finally:
        coordinator.close()
    output_json({"ok": True, "result": item.to_dict()})
