"""CLI entry point: argparse dispatcher for all subcommands."""
from __future__ import annotations

import argparse
import json
import sys
import traceback


# ---------------------------------------------------------------------------
# Command registry: command name → (module_path, function_name)
# Lazy-imported at dispatch time to keep startup fast.
# ---------------------------------------------------------------------------
COMMANDS = {
    "search":  ("cli.commands.search", "cmd_search"),
    "random":  ("cli.commands.search", "cmd_random"),
    "status":  ("cli.commands.index",  "cmd_status"),
    "inspect": ("cli.commands.index",  "cmd_inspect"),
    "serve":   ("cli.commands.serve",  "cmd_serve"),
    "watch":   ("cli.commands.watch",  "cmd_watch"),
}


# ---------------------------------------------------------------------------
# Shared argparse helpers
# ---------------------------------------------------------------------------
def _add_db_arg(p: argparse.ArgumentParser) -> None:
    p.add_argument("--db", help="Catalog file (default: CATALOG_DB_PATH)")


# ---------------------------------------------------------------------------
# Parser builder
# ---------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    from cli._version import __version__

    parser = argparse.ArgumentParser(
        prog="catalog-search",
        description="Catalog search CLI: query and serve WinCatalog catalogs",
    )
    parser.add_argument("--debug", action="store_true", help="Show stack traces on error")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    # search
    p = sub.add_parser("search", help="Search item names (quoted phrases, AND of terms)")
    p.add_argument("query", help="Search query (text)")
    p.add_argument("-l", "--limit", type=int, default=None, help="Max results (1-1000)")
    p.add_argument("-o", "--offset", type=int, default=None, help="Results to skip")
    _add_db_arg(p)

    # random
    p = sub.add_parser("random", help="Pick one random catalog entry")
    _add_db_arg(p)

    # status
    p = sub.add_parser("status", help="Catalog file and index statistics")
    _add_db_arg(p)

    # inspect
    p = sub.add_parser("inspect", help="Dump tables, columns and row counts of a catalog")
    _add_db_arg(p)

    # serve
    p = sub.add_parser("serve", help="Run the HTTP search service")
    p.add_argument("--host", help="Bind address (default: HOST)")
    p.add_argument("--port", type=int, help="Bind port (default: PORT)")
    _add_db_arg(p)

    # watch
    p = sub.add_parser("watch", help="Keep the index live and log reloads (daemon)")
    _add_db_arg(p)

    return parser


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
def main(argv=None) -> None:
    parser = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)
    debug = False
    if "--debug" in argv:
        debug = True
        argv = [arg for arg in argv if arg != "--debug"]
    args = parser.parse_args(argv)
    args.debug = bool(debug or getattr(args, "debug", False))

    entry = COMMANDS.get(args.command)
    if not entry:
        parser.print_help()
        sys.exit(1)

    mod_path, fn_name = entry
    try:
        import importlib
        mod = importlib.import_module(mod_path)
        fn = getattr(mod, fn_name)
        fn(args)
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as exc:
        json.dump({"ok": False, "error": str(exc)}, sys.stdout, default=str)
        sys.stdout.write("\n")
        if args.debug:
            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
