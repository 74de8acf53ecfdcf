#!/usr/bin/env python3
"""
patterns.py - Query and exclude-pattern compilation.

Turns user text into SQL ``LIKE`` patterns that are always bound as
parameters and evaluated with ``ESCAPE '\\'``:

- search strings become a list of terms (quoted phrases and bare words),
  each matched as a case-insensitive substring;
- exclude globs become filename patterns (matched against an entry's own
  name) or directory patterns (matched against resolved paths).

Pattern format rules for excludes:
- Patterns without "/" match against filenames only ("*.tmp", "Thumbs.db")
- Patterns ending with "/" or "/*" match directories ("@eaDir/", "node_modules/*")
- Patterns with "/" anywhere else are invalid and are skipped with an error log
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List

from catalog_search.logger import get_logger

logger = get_logger(__name__)

ESCAPE_CHAR = "\\"
PATH_SEPARATOR = "/"
MATCH_ALL_CLAUSE = "1=1"


@dataclass(frozen=True)
class SearchTerm:
    value: str
    is_phrase: bool = False


@dataclass(frozen=True)
class ExcludeRules:
    """Compiled exclude patterns, split by what they are matched against."""

    filename_patterns: List[str] = field(default_factory=list)
    directory_patterns: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.filename_patterns and not self.directory_patterns


def parse_query(text: str | None) -> List[SearchTerm]:
    """Parse a search string into phrase and word terms.

    Quotes take precedence: the string is split on ``"`` and the segments
    alternate between outside-quotes (split further on whitespace) and
    inside-quotes (kept whole). An unterminated quote runs to the end.
    """
    if not text or not text.strip():
        return []

    terms: List[SearchTerm] = []
    for index, segment in enumerate(text.split('"')):
        if index % 2 == 1:
            phrase = segment.strip()
            if phrase:
                terms.append(SearchTerm(phrase, True))
        else:
            terms.extend(SearchTerm(word, False) for word in segment.split())
    return terms


def _escape_like(text: str) -> str:
    # escape char first so the escapes added below are not doubled
    return (
        text.replace(ESCAPE_CHAR, ESCAPE_CHAR * 2)
        .replace("%", ESCAPE_CHAR + "%")
        .replace("_", ESCAPE_CHAR + "_")
    )


def term_to_match_pattern(term: SearchTerm | str) -> str:
    """Substring pattern for one search term, wildcards escaped."""
    value = term.value if isinstance(term, SearchTerm) else term
    return f"%{_escape_like(value)}%"


def glob_to_match_pattern(pattern: str) -> str:
    """Convert a glob (``*`` wildcard) into a LIKE pattern.

    ``*.tmp`` -> ``%\\.tmp``; ``Thumbs.db`` -> ``Thumbs\\.db``.
    """
    escaped = _escape_like(pattern)
    escaped = escaped.replace(".", ESCAPE_CHAR + ".")
    return escaped.replace("*", "%")


def compile_exclude_patterns(patterns: Iterable[str] | None) -> ExcludeRules:
    """Validate and categorize exclude patterns.

    Invalid patterns are logged once each and left out of the result; they
    never abort indexing.
    """
    filename_patterns: List[str] = []
    directory_patterns: List[str] = []
    rejected: List[str] = []

    for raw in patterns or ():
        pattern = (raw or "").strip()
        if not pattern:
            continue
        slash = pattern.find(PATH_SEPARATOR)
        if slash == -1:
            filename_patterns.append(pattern)
        elif slash == len(pattern) - 1 and len(pattern) > 1:
            directory_patterns.append(pattern[:-1])
        elif slash == len(pattern) - 2 and pattern.endswith(PATH_SEPARATOR + "*") and len(pattern) > 2:
            directory_patterns.append(pattern[:-2])
        else:
            logger.error(
                f'Invalid exclude pattern "{pattern}": slash (/) is only allowed at the end '
                f'(e.g., "dirName/" or "dirName/*"). Pattern ignored.'
            )
            rejected.append(pattern)

    return ExcludeRules(filename_patterns, directory_patterns, rejected)


def build_filename_exclusion(column: str, rules: ExcludeRules) -> tuple[str, List[str]]:
    """SQL fragment dropping rows whose ``column`` matches a filename pattern."""
    clauses = [f"{column} NOT LIKE ? ESCAPE '\\'" for _ in rules.filename_patterns]
    params = [glob_to_match_pattern(p) for p in rules.filename_patterns]
    return " AND ".join(clauses), params


def build_directory_exclusion(column: str, rules: ExcludeRules) -> tuple[str, List[str]]:
    """SQL predicate that is true for paths inside an excluded directory.

    For a directory pattern ``dir`` a path matches when it equals ``dir``,
    starts with ``dir/``, ends with ``/dir`` or contains ``/dir/``.
    """
    clauses: List[str] = []
    params: List[str] = []
    for directory in rules.directory_patterns:
        like = glob_to_match_pattern(directory)
        clauses.append(
            "("
            f"{column} LIKE ? ESCAPE '\\' OR {column} LIKE ? ESCAPE '\\' "
            f"OR {column} LIKE ? ESCAPE '\\' OR {column} LIKE ? ESCAPE '\\'"
            ")"
        )
        params.extend([like, f"{like}/%", f"%/{like}", f"%/{like}/%"])
    return " OR ".join(clauses), params


def build_search_where_clause(terms: List[SearchTerm], column: str = "name") -> tuple[str, List[str]]:
    """AND of one substring predicate per term; match-all for no terms."""
    if not terms:
        return MATCH_ALL_CLAUSE, []
    clause = " AND ".join(f"{column} LIKE ? ESCAPE '\\'" for _ in terms)
    return clause, [term_to_match_pattern(t) for t in terms]
