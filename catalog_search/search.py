"""Query engine over the published search index.

Every call pins exactly one index generation for its whole duration, so a
response never mixes rows from before and after a rebuild.
"""

from __future__ import annotations

import os
import random as _random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from catalog_search.index_core.generation import SEARCH_INDEX_COLUMNS
from catalog_search.index_core.source import ITYPE_CATALOG_ROOT, ITYPE_FOLDER, ITYPE_VOLUME
from catalog_search.logger import NoItemsError, get_logger
from catalog_search.patterns import build_search_where_clause, parse_query
from catalog_search.refresh_core.coordinator import RefreshCoordinator, get_coordinator

logger = get_logger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000

_SELECT_COLUMNS = ", ".join(SEARCH_INDEX_COLUMNS)


def get_item_type(itype: int) -> str:
    """Map a catalog itype to ``file``, ``folder`` or ``volume``."""
    if itype == ITYPE_VOLUME:
        return "volume"
    if itype in (ITYPE_FOLDER, ITYPE_CATALOG_ROOT):
        return "folder"
    return "file"


def _join_root(root_path: str, full_path: str) -> str:
    if root_path.endswith("/") or root_path.endswith("\\"):
        return root_path + full_path
    return f"{root_path}/{full_path}"


def build_path(
    name: str,
    full_path: Optional[str],
    volume_label: Optional[str] = None,
    volume_path: Optional[str] = None,
) -> str:
    """Compose the display path of an index row.

    The volume root path prefixes the full path; without one the bracketed
    volume label is used, and without a volume the bare full path. Rows with
    no resolved path fall back to their own name.
    """
    if not full_path:
        return name
    if volume_path:
        return _join_root(volume_path, full_path)
    if volume_label:
        return f"[{volume_label}]/{full_path}"
    return full_path


@dataclass
class SearchResultItem:
    id: int
    name: str
    path: str
    size: int
    date_modified: Optional[str]
    date_created: Optional[str]
    type: str
    volume_label: Optional[str] = None
    volume_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "dateModified": self.date_modified,
            "dateCreated": self.date_created,
            "type": self.type,
            "volumeLabel": self.volume_label,
            "volumePath": self.volume_path,
        }


@dataclass
class SearchResponse:
    query: str
    results: List[SearchResultItem] = field(default_factory=list)
    execution_time_ms: int = 0

    @property
    def total_results_on_this_page(self) -> int:
        return len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "results": [r.to_dict() for r in self.results],
            "totalResultsOnThisPage": self.total_results_on_this_page,
            "executionTimeMs": self.execution_time_ms,
        }


@dataclass
class DbStatus:
    connected: bool
    path: str
    file_size_bytes: int
    last_modified_iso: str
    last_loaded_iso: Optional[str]
    total_items: int = 0
    total_files: int = 0
    total_folders: int = 0
    total_volumes: int = 0
    total_size_bytes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "path": self.path,
            "fileSizeBytes": self.file_size_bytes,
            "lastModifiedISO": self.last_modified_iso,
            "lastLoadedISO": self.last_loaded_iso,
            "statistics": {
                "totalItems": self.total_items,
                "totalFiles": self.total_files,
                "totalFolders": self.total_folders,
                "totalVolumes": self.total_volumes,
                "totalSizeBytes": self.total_size_bytes,
            },
        }


def map_row_to_result(row: Sequence[Any]) -> SearchResultItem:
    """Convert a ``search_index`` row (column order of the table) to a result."""
    (item_id, name, itype, size, date_modified, date_created,
     full_path, volume_label, volume_path) = row
    return SearchResultItem(
        id=int(item_id),
        name=name,
        path=build_path(name, full_path, volume_label, volume_path),
        size=int(size or 0),
        date_modified=date_modified,
        date_created=date_created,
        type=get_item_type(itype),
        volume_label=volume_label,
        volume_path=volume_path,
    )


def build_search_query(text: str) -> Tuple[str, List[Any]]:
    """SQL (without LIMIT/OFFSET) and parameters for a user query."""
    where, params = build_search_where_clause(parse_query(text))
    sql = (
        f"SELECT {_SELECT_COLUMNS} FROM search_index "
        f"WHERE {where} ORDER BY COALESCE(size, 0) DESC, id ASC"
    )
    return sql, params


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return min(max(1, int(limit)), MAX_LIMIT)


def clamp_offset(offset: Optional[int]) -> int:
    if offset is None:
        return 0
    return max(0, int(offset))


def execute_search(
    query: str,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    coordinator: Optional[RefreshCoordinator] = None,
) -> SearchResponse:
    """Run a paginated search against the current index generation."""
    started = time.perf_counter()
    coordinator = coordinator or get_coordinator()
    effective_limit = clamp_limit(limit)
    effective_offset = clamp_offset(offset)

    coordinator.check_and_reload_if_changed(reason="query", raise_errors=False)

    sql, params = build_search_query(query)
    with coordinator.reading() as generation:
        rows = generation.fetchall(f"{sql} LIMIT ? OFFSET ?", [*params, effective_limit, effective_offset])

    results = [map_row_to_result(r) for r in rows]
    elapsed_ms = int(round((time.perf_counter() - started) * 1000))
    logger.debug(f"Search {query!r}: {len(results)} results in {elapsed_ms} ms")
    return SearchResponse(query=query, results=results, execution_time_ms=elapsed_ms)


def execute_random(
    coordinator: Optional[RefreshCoordinator] = None,
    rng: Optional[_random.Random] = None,
) -> SearchResultItem:
    """Return one entry chosen uniformly from the current generation.

    Raises:
        NoItemsError: the index is empty
    """
    coordinator = coordinator or get_coordinator()
    rng = rng or _random
    coordinator.check_and_reload_if_changed(reason="query", raise_errors=False)

    with coordinator.reading() as generation:
        total = generation.count()
        if total == 0:
            raise NoItemsError("No items in the database")
        row = generation.fetchone(
            f"SELECT {_SELECT_COLUMNS} FROM search_index ORDER BY id LIMIT 1 OFFSET ?",
            (rng.randrange(total),),
        )
    if row is None:
        raise NoItemsError("No items in the database")
    return map_row_to_result(row)


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def get_db_status(coordinator: Optional[RefreshCoordinator] = None) -> DbStatus:
    """Catalog file facts plus statistics of the published generation.

    Raises ``OSError`` when the catalog file cannot be stat'ed.
    """
    coordinator = coordinator or get_coordinator()
    st = os.stat(coordinator.source_path)
    last_modified = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)

    with coordinator.reading() as generation:
        stats = generation.statistics
        loaded = coordinator.last_reload_time or generation.built_at

    return DbStatus(
        connected=True,
        path=coordinator.source_path,
        file_size_bytes=int(st.st_size),
        last_modified_iso=_iso(last_modified),
        last_loaded_iso=_iso(loaded) if loaded else None,
        total_items=stats.total_items,
        total_files=stats.total_files,
        total_folders=stats.total_folders,
        total_volumes=stats.total_volumes,
        total_size_bytes=stats.total_size_bytes,
    )


__all__ = [
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    "DbStatus",
    "SearchResponse",
    "SearchResultItem",
    "build_path",
    "build_search_query",
    "execute_random",
    "execute_search",
    "get_db_status",
    "get_item_type",
    "map_row_to_result",
]
