"""Serve command: run the HTTP search service."""
from __future__ import annotations

import argparse
import os
import sys


def cmd_serve(args: argparse.Namespace) -> None:
    """Start uvicorn with the search service until interrupted."""
    db_path = getattr(args, "db", None)
    if db_path:
        # the service lifespan reads its settings from the environment
        os.environ["CATALOG_DB_PATH"] = db_path
        from catalog_search.config import reset_config

        reset_config()

    from catalog_search.http_service import main as serve_main

    print("Starting catalog search service...", file=sys.stderr)
    serve_main(host=getattr(args, "host", None), port=getattr(args, "port", None))
