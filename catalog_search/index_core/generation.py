"""One published, immutable build of the flattened search index."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Sequence

from catalog_search.logger import IndexNotReadyError
from catalog_search.index_core.source import SourceSignature

SEARCH_INDEX_DDL = """
CREATE TABLE search_index (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    itype INTEGER NOT NULL,
    size INTEGER,
    date_modified TEXT,
    date_created TEXT,
    full_path TEXT,
    volume_label TEXT,
    volume_path TEXT
)
"""

SEARCH_INDEX_COLUMNS = (
    "id",
    "name",
    "itype",
    "size",
    "date_modified",
    "date_created",
    "full_path",
    "volume_label",
    "volume_path",
)


@dataclass(frozen=True)
class IndexEntry:
    id: int
    name: str
    itype: int
    size: Optional[int] = None
    date_modified: Optional[str] = None
    date_created: Optional[str] = None
    full_path: Optional[str] = None
    volume_label: Optional[str] = None
    volume_path: Optional[str] = None

    def as_row(self) -> tuple:
        return tuple(getattr(self, c) for c in SEARCH_INDEX_COLUMNS)


@dataclass(frozen=True)
class IndexStatistics:
    total_items: int = 0
    total_files: int = 0
    total_folders: int = 0
    total_volumes: int = 0
    total_size_bytes: int = 0


@dataclass
class BuildReport:
    """Counters collected while building a generation."""

    candidates: int = 0
    excluded_by_directory: int = 0
    rejected_patterns: List[str] = field(default_factory=list)
    elapsed_ms: int = 0


class IndexGeneration:
    """Wraps the private in-memory database of one index build.

    Readers enter :meth:`reading`; once the generation has been replaced the
    coordinator calls :meth:`retire` and the connection is closed as soon as
    the last reader leaves. Statement execution is serialized on the
    connection.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        source_path: str,
        signature: Optional[SourceSignature],
        statistics: IndexStatistics,
        report: Optional[BuildReport] = None,
        built_at: Optional[datetime] = None,
    ):
        self._conn = conn
        self.source_path = source_path
        self.signature = signature
        self.statistics = statistics
        self.report = report or BuildReport()
        self.built_at = built_at or datetime.now(timezone.utc)
        self._cond = threading.Condition()
        self._exec_lock = threading.Lock()
        self._readers = 0
        self._retired = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def readers(self) -> int:
        return self._readers

    def acquire(self) -> None:
        with self._cond:
            if self._closed:
                raise IndexNotReadyError("Index generation has been closed")
            self._readers += 1

    def release(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._retired and self._readers == 0:
                self._close_locked()

    @contextmanager
    def reading(self) -> Iterator["IndexGeneration"]:
        self.acquire()
        try:
            yield self
        finally:
            self.release()

    def retire(self) -> None:
        """Mark as replaced; closes now or when the last reader finishes."""
        with self._cond:
            self._retired = True
            if self._readers == 0:
                self._close_locked()

    def close(self) -> None:
        self.retire()

    def _close_locked(self) -> None:
        if self._closed:
            return
        with self._exec_lock:
            self._conn.close()
        self._closed = True
        self._cond.notify_all()

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        with self._exec_lock:
            return self._conn.execute(sql, params).fetchall()

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        with self._exec_lock:
            return self._conn.execute(sql, params).fetchone()

    def count(self) -> int:
        row = self.fetchone("SELECT COUNT(*) FROM search_index")
        return int(row[0]) if row else 0

    def get_entry(self, item_id: int) -> Optional[IndexEntry]:
        row = self.fetchone(
            f"SELECT {', '.join(SEARCH_INDEX_COLUMNS)} FROM search_index WHERE id = ?",
            (item_id,),
        )
        return IndexEntry(*row) if row else None

    def entries(self) -> List[IndexEntry]:
        rows = self.fetchall(
            f"SELECT {', '.join(SEARCH_INDEX_COLUMNS)} FROM search_index ORDER BY id"
        )
        return [IndexEntry(*r) for r in rows]
