"""
Data Models - Type definitions for the index and its queries.

These dataclasses represent the data flowing between the scanner, builder,
storage codec and query engine, ensuring clear interfaces between modules.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple
from enum import Enum


FORMAT_VERSION = "2.1"


class Domain(Enum):
    """A population of indexed files."""
    WORKSPACE = "workspace"
    DEPENDENCIES = "dependencies"
    STDLIB = "stdlib"


# Order used by builds and by combined search results
DOMAIN_ORDER: Tuple[Domain, ...] = (Domain.WORKSPACE, Domain.DEPENDENCIES, Domain.STDLIB)


class SearchMode(Enum):
    """How a query pattern is compared against indexed lines."""
    EXACT = "exact"   # Case-sensitive, against original content
    FUZZY = "fuzzy"   # Case-insensitive, against normalized content


@dataclass
class IndexedFile:
    """
    A single file held in memory by the index.

    `normalized_content` is the lowercase form of `content`; both split into
    the same number of lines with index-for-index correspondence.
    """
    path: str
    last_modified: float
    symbols: List[str]
    content: str
    normalized_content: str

    @classmethod
    def from_content(
        cls,
        path: str,
        content: str,
        last_modified: float,
        symbols: Optional[List[str]] = None,
    ) -> "IndexedFile":
        return cls(
            path=path,
            last_modified=last_modified,
            symbols=symbols or [],
            content=content,
            normalized_content=content.lower(),
        )


@dataclass
class RawFile:
    """Scanner output: a discovered file and its text."""
    path: str
    content: str
    last_modified: float
    is_manifest: bool = False


@dataclass
class Index:
    """
    The whole in-memory index for one workspace identity.

    Domain maps are keyed by path; no ordering is implied.
    """
    workspace_identity: str
    format_version: str = FORMAT_VERSION
    last_built: float = 0.0
    manifest_fingerprint: str = ""
    toolchain_fingerprint: str = ""
    workspace: Dict[str, IndexedFile] = field(default_factory=dict)
    dependencies: Dict[str, IndexedFile] = field(default_factory=dict)
    stdlib: Dict[str, IndexedFile] = field(default_factory=dict)

    def domain(self, domain: Domain) -> Dict[str, IndexedFile]:
        if domain is Domain.WORKSPACE:
            return self.workspace
        if domain is Domain.DEPENDENCIES:
            return self.dependencies
        return self.stdlib

    def domains(self) -> Iterator[Tuple[Domain, Dict[str, IndexedFile]]]:
        for domain in DOMAIN_ORDER:
            yield domain, self.domain(domain)

    def clear(self) -> None:
        self.workspace.clear()
        self.dependencies.clear()
        self.stdlib.clear()

    def is_empty(self) -> bool:
        return not (self.workspace or self.dependencies or self.stdlib)

    def counts(self) -> Dict[str, int]:
        return {domain.value: len(files) for domain, files in self.domains()}


@dataclass
class LineMatch:
    """A matching line. `line_number` is zero-based."""
    line_number: int
    line: str


@dataclass
class FileMatches:
    """All capped matches for one file."""
    path: str
    domain: Domain
    matches: List[LineMatch]


@dataclass
class SearchResults:
    """Per-domain query results, unordered within each domain."""
    workspace: List[FileMatches] = field(default_factory=list)
    dependencies: List[FileMatches] = field(default_factory=list)
    stdlib: List[FileMatches] = field(default_factory=list)

    def for_domain(self, domain: Domain) -> List[FileMatches]:
        if domain is Domain.WORKSPACE:
            return self.workspace
        if domain is Domain.DEPENDENCIES:
            return self.dependencies
        return self.stdlib

    @property
    def total_files(self) -> int:
        return len(self.workspace) + len(self.dependencies) + len(self.stdlib)


@dataclass
class IndexingStats:
    """Statistics from a full build."""
    workspace_files: int = 0
    dependency_files: int = 0
    stdlib_files: int = 0
    skipped_files: int = 0      # Discovered but unreadable or unindexable
    capped_domains: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def __str__(self) -> str:
        text = (
            f"Indexed {self.workspace_files} workspace, "
            f"{self.dependency_files} dependency and "
            f"{self.stdlib_files} stdlib files "
            f"({self.skipped_files} skipped) "
            f"in {self.duration_seconds:.1f}s"
        )
        if self.capped_domains:
            text += f"; discovery capped for {', '.join(self.capped_domains)}"
        return text
