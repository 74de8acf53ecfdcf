"""Build a flattened search index generation from a source catalog.

The expensive work (ancestry walks, volume lookups, folder-size rollups)
happens once here so that queries only scan a single flat table:

1. enumerate file/folder/volume items, dropping filename-pattern matches
2. resolve each item's path below its owning volume
3. drop entries inside excluded directories
4. roll file sizes up into every ancestor folder
5. index the name column for case-insensitive matching

The result lives in a private in-memory SQLite database, so a failed build
never touches the generation currently being served.
"""

from __future__ import annotations

import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from catalog_search.logger import (
    CatalogSearchError,
    ContextLogger,
    IndexBuildError,
    get_logger,
)
from catalog_search.patterns import (
    ExcludeRules,
    build_directory_exclusion,
    compile_exclude_patterns,
)
from catalog_search.index_core.ancestry import DEFAULT_MAX_DEPTH, AncestryResolver
from catalog_search.index_core.generation import (
    SEARCH_INDEX_COLUMNS,
    SEARCH_INDEX_DDL,
    BuildReport,
    IndexEntry,
    IndexGeneration,
    IndexStatistics,
)
from catalog_search.index_core.source import (
    ITYPE_FILE,
    ITYPE_FOLDER,
    ITYPE_VOLUME,
    CandidateItem,
    SourceStore,
    VolumeMeta,
    read_signature,
)

logger = get_logger(__name__)


def format_date(value: Optional[str]) -> Optional[str]:
    """Normalize a catalog timestamp to ISO-8601 UTC.

    Naive timestamps are taken as UTC. Values that cannot be parsed are
    returned unchanged.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return text
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_entries(
    candidates: Iterable[CandidateItem],
    resolver: AncestryResolver,
    volumes: Mapping[int, VolumeMeta],
) -> List[IndexEntry]:
    """Attach resolved path and volume attribution to every candidate."""
    entries: List[IndexEntry] = []
    for item in candidates:
        ancestry = resolver.resolve(item.id)
        volume = volumes.get(ancestry.volume_id) if ancestry.volume_id is not None else None
        itype = item.itype
        if ancestry.volume_id == item.id:
            itype = ITYPE_VOLUME
        entries.append(
            IndexEntry(
                id=item.id,
                name=item.display_name,
                itype=itype,
                size=item.size if itype == ITYPE_FILE else None,
                date_modified=format_date(item.date_change),
                date_created=format_date(item.date_create),
                full_path=ancestry.full_path,
                volume_label=volume.volume_label if volume else None,
                volume_path=volume.root_path if volume else None,
            )
        )
    return entries


def compute_folder_sizes(
    files: Iterable[Tuple[int, Optional[int]]],
    folder_ids: Iterable[int],
    parents: Mapping[int, Tuple[int, ...]],
) -> Dict[int, int]:
    """Sum file sizes into every folder that is a transitive ancestor.

    Each file is counted at most once per folder, even when several
    parent-link paths lead from the file to the same folder.
    """
    sizes: Dict[int, int] = {folder_id: 0 for folder_id in folder_ids}
    for file_id, size in files:
        if not size:
            continue
        visited = {file_id}
        stack = list(parents.get(file_id, ()))
        while stack:
            node = stack.pop()
            if node in visited:
                continue
            visited.add(node)
            if node in sizes:
                sizes[node] += size
            stack.extend(parents.get(node, ()))
    return sizes


def _create_index_db(entries: List[IndexEntry]) -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.execute(SEARCH_INDEX_DDL)
    placeholders = ", ".join("?" for _ in SEARCH_INDEX_COLUMNS)
    conn.executemany(
        f"INSERT INTO search_index ({', '.join(SEARCH_INDEX_COLUMNS)}) VALUES ({placeholders})",
        (e.as_row() for e in entries),
    )
    return conn


def _apply_directory_exclusion(conn: sqlite3.Connection, rules: ExcludeRules) -> int:
    if not rules.directory_patterns:
        return 0
    clause, params = build_directory_exclusion("full_path", rules)
    cur = conn.execute(
        f"DELETE FROM search_index WHERE full_path IS NOT NULL AND ({clause})", params
    )
    return max(cur.rowcount, 0)


def _apply_folder_sizes(conn: sqlite3.Connection, parents: Mapping[int, Tuple[int, ...]]) -> None:
    files = conn.execute(
        "SELECT id, size FROM search_index WHERE itype = ?", (ITYPE_FILE,)
    ).fetchall()
    folders = [
        row[0]
        for row in conn.execute("SELECT id FROM search_index WHERE itype = ?", (ITYPE_FOLDER,))
    ]
    sizes = compute_folder_sizes(files, folders, parents)
    conn.executemany(
        "UPDATE search_index SET size = ? WHERE id = ?",
        ((size, folder_id) for folder_id, size in sizes.items()),
    )


def _collect_statistics(conn: sqlite3.Connection) -> IndexStatistics:
    row = conn.execute(
        """
        SELECT
            COUNT(*),
            COALESCE(SUM(CASE WHEN itype = ? THEN 1 ELSE 0 END), 0),
            COALESCE(SUM(CASE WHEN itype = ? THEN 1 ELSE 0 END), 0),
            COALESCE(SUM(CASE WHEN itype = ? THEN 1 ELSE 0 END), 0),
            COALESCE(SUM(CASE WHEN itype = ? THEN COALESCE(size, 0) ELSE 0 END), 0)
        FROM search_index
        """,
        (ITYPE_FILE, ITYPE_FOLDER, ITYPE_VOLUME, ITYPE_FILE),
    ).fetchone()
    return IndexStatistics(*(int(v) for v in row))


def build_generation(
    source_path: str | Path,
    exclude_patterns: Iterable[str] | None = None,
    *,
    min_file_size: int = 0,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> IndexGeneration:
    """Read the source catalog once and return a complete index generation.

    Raises:
        SourceUnavailableError: the catalog is missing or not a catalog
        IndexBuildError: reading or materializing the index failed
    """
    path = str(source_path)
    log = ContextLogger(logger, source=path)
    started = time.perf_counter()
    report = BuildReport()

    # signature first, so a write landing mid-build triggers another rebuild
    signature = read_signature(path)
    rules = compile_exclude_patterns(exclude_patterns)
    report.rejected_patterns = list(rules.rejected)
    log.info(
        "Building search index",
        filename_patterns=len(rules.filename_patterns),
        directory_patterns=len(rules.directory_patterns),
        min_file_size=min_file_size,
    )

    conn: Optional[sqlite3.Connection] = None
    try:
        with SourceStore(path) as store:
            candidates = list(store.iter_items(rules, min_file_size=min_file_size))
            parents = store.parent_links()
            items = store.item_names()
            volumes = store.volume_meta()

        report.candidates = len(candidates)
        names = {item_id: name for item_id, (name, _) in items.items()}

        def is_volume(item_id: int) -> bool:
            return item_id in volumes or items.get(item_id, ("", 0))[1] == ITYPE_VOLUME

        resolver = AncestryResolver(parents, names, is_volume, max_depth=max_depth)
        entries = make_entries(candidates, resolver, volumes)

        conn = _create_index_db(entries)
        report.excluded_by_directory = _apply_directory_exclusion(conn, rules)
        _apply_folder_sizes(conn, parents)
        conn.execute("CREATE INDEX idx_search_name ON search_index(name COLLATE NOCASE)")
        conn.commit()
        statistics = _collect_statistics(conn)
    except CatalogSearchError:
        if conn is not None:
            conn.close()
        raise
    except sqlite3.Error as exc:
        if conn is not None:
            conn.close()
        log.exception("Index build failed")
        raise IndexBuildError(f"Failed to build search index from {path}: {exc}") from exc

    report.elapsed_ms = int(round((time.perf_counter() - started) * 1000))
    log.info(
        f"Search index built: {statistics.total_items} entries in {report.elapsed_ms} ms",
        entries=statistics.total_items,
        candidates=report.candidates,
        excluded_by_directory=report.excluded_by_directory,
        elapsed_ms=report.elapsed_ms,
    )
    return IndexGeneration(
        conn,
        source_path=path,
        signature=signature,
        statistics=statistics,
        report=report,
    )
