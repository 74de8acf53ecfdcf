"""Read-only access to a WinCatalog source catalog (``.w3cat`` SQLite file)."""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from catalog_search.logger import SourceUnavailableError, get_logger
from catalog_search.patterns import ExcludeRules, build_filename_exclusion

logger = get_logger(__name__)

# Known w3_items.itype values
ITYPE_FILE = 1
ITYPE_CATALOG_ROOT = 150
ITYPE_VOLUME = 172
ITYPE_FOLDER = 200

INDEXED_ITYPES = (ITYPE_FILE, ITYPE_FOLDER, ITYPE_VOLUME)

REQUIRED_TABLES = ("w3_items", "w3_fileInfo", "w3_decent", "w3_volumeInfo")

# parent id meaning "no parent"
ROOT_PARENT_ID = 0


@dataclass(frozen=True)
class SourceSignature:
    """Modification signature of the source file used for change detection."""

    mtime_ns: int
    size: Optional[int] = None

    @property
    def mtime(self) -> float:
        return self.mtime_ns / 1e9


@dataclass(frozen=True)
class CandidateItem:
    """One enumerated item joined with its optional file metadata."""

    id: int
    name: str
    itype: int
    file_name: Optional[str]
    size: Optional[int]
    date_change: Optional[str]
    date_create: Optional[str]

    @property
    def display_name(self) -> str:
        return self.file_name or self.name


@dataclass(frozen=True)
class VolumeMeta:
    id_item: int
    volume_label: Optional[str]
    root_path: Optional[str]


def read_signature(path: str | Path) -> SourceSignature:
    """Stat the source file; raises SourceUnavailableError when it is missing."""
    try:
        st = os.stat(path)
    except OSError as exc:
        raise SourceUnavailableError(f"Cannot stat catalog {path}: {exc}") from exc
    return SourceSignature(mtime_ns=st.st_mtime_ns, size=st.st_size)


class SourceStore:
    """Read-only handle on the source catalog.

    Usable as a context manager; the underlying connection is opened with
    ``mode=ro`` so nothing can be written back to the catalog.
    """

    def __init__(self, path: str | Path):
        self.path = str(path)
        self._conn: Optional[sqlite3.Connection] = None

    def open(self, require_tables: bool = True) -> "SourceStore":
        if not os.path.isfile(self.path):
            raise SourceUnavailableError(f"Catalog file not found: {self.path}")
        uri = Path(os.path.abspath(self.path)).as_uri() + "?mode=ro"
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = sqlite3.connect(uri, uri=True)
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        except sqlite3.Error as exc:
            if conn is not None:
                conn.close()
            raise SourceUnavailableError(f"Catalog {self.path} is not readable: {exc}") from exc
        missing = [t for t in REQUIRED_TABLES if t not in tables] if require_tables else []
        if missing:
            conn.close()
            raise SourceUnavailableError(
                f"Catalog {self.path} is missing tables: {', '.join(missing)}"
            )
        self._conn = conn
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "SourceStore":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise SourceUnavailableError("Source catalog is not open")
        return self._conn

    def signature(self) -> SourceSignature:
        return read_signature(self.path)

    def iter_items(
        self,
        rules: Optional[ExcludeRules] = None,
        min_file_size: int = 0,
    ) -> Iterator[CandidateItem]:
        """Enumerate file/folder/volume items, applying filename exclusion.

        Files smaller than ``min_file_size`` (unknown size counts as 0) are
        skipped when the threshold is positive.
        """
        placeholders = ", ".join("?" for _ in INDEXED_ITYPES)
        sql = f"""
            SELECT i.id, i.name, i.itype, f.name, f.size, f.date_change, f.date_create
            FROM w3_items i
            LEFT JOIN w3_fileInfo f ON i.id = f.id_item
            WHERE i.itype IN ({placeholders})
        """
        params: List[object] = list(INDEXED_ITYPES)
        if rules is not None and rules.filename_patterns:
            clause, like_params = build_filename_exclusion("COALESCE(f.name, i.name)", rules)
            sql += f" AND {clause}"
            params.extend(like_params)
        if min_file_size > 0:
            sql += " AND (i.itype != ? OR COALESCE(f.size, 0) >= ?)"
            params.extend([ITYPE_FILE, min_file_size])
        sql += " ORDER BY i.id"

        seen: set[int] = set()
        for row in self.conn.execute(sql, params):
            item_id = int(row[0])
            # duplicate w3_fileInfo rows: first one wins
            if item_id in seen:
                continue
            seen.add(item_id)
            yield CandidateItem(
                id=item_id,
                name=row[1] if row[1] is not None else "",
                itype=int(row[2]),
                file_name=row[3] or None,
                size=int(row[4]) if row[4] is not None else None,
                date_change=_as_text(row[5]),
                date_create=_as_text(row[6]),
            )

    def parent_links(self) -> Dict[int, Tuple[int, ...]]:
        """Map item id -> sorted tuple of parent ids (root markers removed)."""
        links: Dict[int, set[int]] = {}
        for item_id, parent_id in self.conn.execute("SELECT id_item, id_parent FROM w3_decent"):
            if item_id is None:
                continue
            parents = links.setdefault(int(item_id), set())
            if parent_id is not None and int(parent_id) != ROOT_PARENT_ID:
                parents.add(int(parent_id))
        return {k: tuple(sorted(v)) for k, v in links.items()}

    def item_names(self) -> Dict[int, Tuple[str, int]]:
        """Map every item id (any type) -> (display name, itype)."""
        names: Dict[int, Tuple[str, int]] = {}
        sql = """
            SELECT i.id, COALESCE(f.name, i.name), i.itype
            FROM w3_items i
            LEFT JOIN w3_fileInfo f ON i.id = f.id_item
        """
        for item_id, name, itype in self.conn.execute(sql):
            names.setdefault(int(item_id), (name or "", int(itype)))
        return names

    def volume_meta(self) -> Dict[int, VolumeMeta]:
        volumes: Dict[int, VolumeMeta] = {}
        sql = "SELECT id_item, volume_label, root_path FROM w3_volumeInfo"
        for item_id, label, root_path in self.conn.execute(sql):
            volumes.setdefault(
                int(item_id), VolumeMeta(int(item_id), label or None, root_path or None)
            )
        return volumes

    def table_summary(self) -> List[dict]:
        """Tables with their columns and row counts (schema inspection)."""
        summary = []
        tables = self.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
        ).fetchall()
        for (table,) in tables:
            quoted = '"' + table.replace('"', '""') + '"'
            columns = [
                {"name": c[1], "type": c[2], "notnull": bool(c[3]), "pk": bool(c[5])}
                for c in self.conn.execute(f"PRAGMA table_info({quoted})")
            ]
            count = self.conn.execute(f"SELECT COUNT(*) FROM {quoted}").fetchone()[0]
            summary.append({"table": table, "columns": columns, "rows": int(count)})
        return summary


def _as_text(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
