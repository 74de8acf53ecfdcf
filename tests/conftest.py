import os
import sqlite3
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

# Ensure repository root is on sys.path so `import catalog_search...` works locally
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from catalog_search.index_core.source import (  # noqa: E402
    ITYPE_CATALOG_ROOT,
    ITYPE_FILE,
    ITYPE_FOLDER,
    ITYPE_VOLUME,
)

CATALOG_SCHEMA = """
CREATE TABLE w3_items (id INTEGER PRIMARY KEY, itype INTEGER, name TEXT);
CREATE TABLE w3_fileInfo (
    id_item INTEGER, name TEXT, date_change TEXT, date_create TEXT, size INTEGER
);
CREATE TABLE w3_decent (id_item INTEGER, id_parent INTEGER);
CREATE TABLE w3_volumeInfo (id_item INTEGER, volume_label TEXT, root_path TEXT);
"""

# fixed base so every write gets a distinct, predictable mtime
_BASE_MTIME_NS = 1_700_000_000 * 1_000_000_000


class CatalogBuilder:
    """Writes small WinCatalog-shaped SQLite catalogs for tests.

    Item 1 is the catalog root; volumes hang off it unless told otherwise.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.items: List[Tuple[int, int, str]] = []
        self.file_info: List[tuple] = []
        self.links: List[Tuple[int, Optional[int]]] = []
        self.volumes: List[Tuple[int, Optional[str], Optional[str]]] = []
        self._next_id = 1
        self._writes = 0
        self.ids: dict = {}
        self.root = self.add_item(ITYPE_CATALOG_ROOT, "Catalog", parent=0)

    def add_item(self, itype: int, name: str, parent: Optional[int] = None) -> int:
        item_id = self._next_id
        self._next_id += 1
        self.items.append((item_id, itype, name))
        self.links.append((item_id, parent))
        return item_id

    def volume(self, name: str, label: Optional[str] = None, root_path: Optional[str] = None,
               parent: Optional[int] = None) -> int:
        vid = self.add_item(ITYPE_VOLUME, name, parent=self.root if parent is None else parent)
        self.volumes.append((vid, label, root_path))
        return vid

    def folder(self, name: str, parent: int, date_change: Optional[str] = None) -> int:
        fid = self.add_item(ITYPE_FOLDER, name, parent=parent)
        if date_change is not None:
            self.file_info.append((fid, None, date_change, None, None))
        return fid

    def file(self, name: str, parent: int, size: Optional[int] = 0,
             date_change: Optional[str] = None, date_create: Optional[str] = None,
             file_name: Optional[str] = None) -> int:
        fid = self.add_item(ITYPE_FILE, name, parent=parent)
        self.file_info.append((fid, file_name, date_change, date_create, size))
        return fid

    def link(self, item_id: int, parent_id: Optional[int]) -> None:
        """Add an extra parent edge."""
        self.links.append((item_id, parent_id))

    def remove(self, item_id: int) -> None:
        self.items = [i for i in self.items if i[0] != item_id]
        self.file_info = [f for f in self.file_info if f[0] != item_id]
        self.links = [link for link in self.links if link[0] != item_id]

    def write(self) -> Path:
        tmp = self.path.with_name(self.path.name + ".tmp")
        if tmp.exists():
            tmp.unlink()
        conn = sqlite3.connect(str(tmp))
        try:
            conn.executescript(CATALOG_SCHEMA)
            conn.executemany("INSERT INTO w3_items (id, itype, name) VALUES (?, ?, ?)", self.items)
            conn.executemany(
                "INSERT INTO w3_fileInfo (id_item, name, date_change, date_create, size) "
                "VALUES (?, ?, ?, ?, ?)",
                self.file_info,
            )
            conn.executemany("INSERT INTO w3_decent (id_item, id_parent) VALUES (?, ?)", self.links)
            conn.executemany(
                "INSERT INTO w3_volumeInfo (id_item, volume_label, root_path) VALUES (?, ?, ?)",
                self.volumes,
            )
            conn.commit()
        finally:
            conn.close()
        os.replace(tmp, self.path)
        self._writes += 1
        mtime_ns = _BASE_MTIME_NS + self._writes * 1_000_000_000
        os.utime(self.path, ns=(mtime_ns, mtime_ns))
        return self.path


@pytest.fixture
def catalog(tmp_path) -> CatalogBuilder:
    return CatalogBuilder(tmp_path / "catalog.w3cat")


@pytest.fixture
def sample_catalog(catalog) -> CatalogBuilder:
    """Two volumes with config files, a nested file and some sizes.

    Data/
      root/config        (file, 10)
      root/.config/      (folder)
        settings.json    (file, 5)
      root/a/b/c/d/deep_file.txt (file, 7)
      root/notes.log     (file, 3)
    Backup/
      root2/config       (file, 20)
    """
    data = catalog.volume("Data", label="DATA", root_path="/mnt/data")
    backup = catalog.volume("Backup", label="BACKUP", root_path=None)
    root = catalog.folder("root", data)
    catalog.ids.update(data=data, backup=backup, root=root)
    catalog.ids["config"] = catalog.file("config", root, size=10, date_change="2024-01-02T03:04:05")
    dot_config = catalog.folder(".config", root)
    catalog.ids["dot_config"] = dot_config
    catalog.ids["settings"] = catalog.file("settings.json", dot_config, size=5)
    parent = root
    for name in ("a", "b", "c", "d"):
        parent = catalog.folder(name, parent)
        catalog.ids[name] = parent
    catalog.ids["deep_file"] = catalog.file("deep_file.txt", parent, size=7)
    catalog.ids["notes"] = catalog.file("notes.log", root, size=3)
    root2 = catalog.folder("root2", backup)
    catalog.ids["root2"] = root2
    catalog.ids["config2"] = catalog.file("config", root2, size=20)
    catalog.write()
    return catalog


@pytest.fixture(autouse=True)
def _reset_process_state(monkeypatch):
    """Keep cached config and the process-wide coordinator out of other tests."""
    from catalog_search import config as config_mod
    from catalog_search.refresh_core import coordinator as coordinator_mod

    config_mod.reset_config()
    yield
    coordinator_mod.close_coordinator()
    config_mod.reset_config()
