"""
Search - Substring queries over the in-memory index.

A deliberate linear scan: every cached line of every file is checked for
containment, so a query costs O(total indexed characters). There is no
secondary index. Matches per file are capped, which bounds the damage from
generated or minified sources.

The engine itself is domain-agnostic and does no minimum-length gating;
ordering across domains is applied afterwards by `combine_results`.
"""

import logging
from typing import List, Sequence, Tuple

from .models import (
    DOMAIN_ORDER, Domain, FileMatches, Index, IndexedFile, LineMatch,
    SearchMode, SearchResults,
)


logger = logging.getLogger(__name__)


DEFAULT_MAX_MATCHES_PER_FILE = 10
DEFAULT_TEST_SUFFIXES: Tuple[str, ...] = ("_test.go",)


def search_file(
    entry: IndexedFile,
    pattern: str,
    mode: SearchMode = SearchMode.FUZZY,
    max_matches: int = DEFAULT_MAX_MATCHES_PER_FILE,
) -> List[LineMatch]:
    """
    Find matching lines in one file.

    Fuzzy mode compares the lowercase pattern against normalized lines;
    exact mode compares the pattern as-is against original lines. The
    displayed line is always the original one.
    """
    lines = entry.content.split("\n")
    if mode is SearchMode.EXACT:
        haystack = lines
        needle = pattern
    else:
        haystack = entry.normalized_content.split("\n")
        needle = pattern.lower()

    matches: List[LineMatch] = []
    for number, line in enumerate(haystack):
        if needle in line:
            display = lines[number] if number < len(lines) else line
            matches.append(LineMatch(line_number=number, line=display.rstrip("\r")))
            if len(matches) >= max_matches:
                break
    return matches


def search_index(
    index: Index,
    pattern: str,
    mode: SearchMode = SearchMode.FUZZY,
    max_matches_per_file: int = DEFAULT_MAX_MATCHES_PER_FILE,
) -> SearchResults:
    """
    Search every domain of the index.

    Iterates over a snapshot of each domain so a concurrent writer never
    invalidates the scan. A file appears only if it has at least one match.
    """
    results = SearchResults()

    for domain, files in index.domains():
        found = results.for_domain(domain)
        for path, entry in list(files.items()):
            matches = search_file(entry, pattern, mode, max_matches_per_file)
            if matches:
                found.append(FileMatches(path=path, domain=domain, matches=matches))

    logger.debug(
        f"Search {pattern!r} ({mode.value}): {len(results.workspace)} workspace, "
        f"{len(results.dependencies)} dependency, {len(results.stdlib)} stdlib files"
    )
    return results


def is_test_path(path: str, suffixes: Sequence[str] = DEFAULT_TEST_SUFFIXES) -> bool:
    return path.endswith(tuple(suffixes))


def combine_results(
    results: SearchResults,
    limit: int,
    test_suffixes: Sequence[str] = DEFAULT_TEST_SUFFIXES,
) -> List[FileMatches]:
    """
    Flatten per-domain results into one ordered, capped list.

    Workspace before dependencies before standard library; within each
    group non-test files before test files, then by path for stability.
    """
    combined: List[FileMatches] = []
    for domain in DOMAIN_ORDER:
        group = sorted(
            results.for_domain(domain),
            key=lambda fm: (is_test_path(fm.path, test_suffixes), fm.path),
        )
        combined.extend(group)
        if len(combined) >= limit:
            break
    return combined[:max(0, limit)]
