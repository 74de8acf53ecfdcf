"""Building blocks for the flattened catalog search index.

Modules:
    source: read-only access to the WinCatalog source tables
    ancestry: bounded, cycle-safe path and volume resolution
    generation: one published, immutable index build
    builder: source catalog -> index generation
"""

from .builder import build_generation, compute_folder_sizes, format_date
from .generation import IndexEntry, IndexGeneration, IndexStatistics
from .source import SourceSignature, SourceStore, read_signature

__all__ = [
    "build_generation",
    "compute_folder_sizes",
    "format_date",
    "IndexEntry",
    "IndexGeneration",
    "IndexStatistics",
    "SourceSignature",
    "SourceStore",
    "read_signature",
]
