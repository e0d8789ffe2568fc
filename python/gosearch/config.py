"""
Indexing Configuration - Centralized settings for the Go search index.

Uses environment variables with sensible defaults. All paths are resolved
to absolute paths for reliability.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Set, Tuple


@dataclass
class IndexerConfig:
    """
    Configuration for the indexing system.

    The persisted index lives under ~/.gosearch by default, one file set
    per workspace identity. Discovery caps and codec ceilings are tuned for
    module caches with tens of thousands of Go files.
    """

    # --- Paths ---
    roots: List[Path] = field(default_factory=lambda: [Path.cwd()])
    storage_dir: Path = field(default_factory=lambda: Path.home() / ".gosearch")

    # --- Discovery ---
    max_workspace_files: int = 20000
    max_stdlib_files: int = 10000
    max_dependency_files: int = 20000  # Per dependency root
    max_depth: int = 10
    stdlib_max_depth: int = 8

    skip_dirs: Set[str] = field(default_factory=lambda: {
        # Version control
        ".git", ".svn", ".hg",
        # IDE/Editor
        ".idea", ".vscode",
        # Foreign ecosystems that never hold Go sources we care about
        "node_modules", "__pycache__", ".venv",
        # Cache
        ".cache",
    })

    source_extensions: Set[str] = field(default_factory=lambda: {".go"})
    manifest_names: Set[str] = field(default_factory=lambda: {"go.mod", "go.sum"})
    test_file_suffixes: Tuple[str, ...] = ("_test.go",)

    # --- Concurrency ---
    batch_size: int = 100          # Files read concurrently per batch
    reader_concurrency: int = 32   # Thread pool size for file reads

    # --- Query ---
    max_matches_per_file: int = 10
    max_results: int = 200
    min_query_length: int = 3      # Only enforced by the CLI

    # --- Watcher ---
    workspace_debounce_seconds: float = 1.0
    manifest_debounce_seconds: float = 3.0

    # --- Freshness ---
    freshness_check_interval_seconds: float = 60 * 60
    staleness_window_seconds: float = 6 * 60 * 60

    # --- Storage codec ceilings (in encoded characters) ---
    direct_max_entries: int = 2000
    max_unit_chars: int = 32 * 1024 * 1024
    chunk_entries: int = 2000
    max_chunked_chars: int = 256 * 1024 * 1024
    entries_per_file: int = 2000
    max_part_chars: int = 32 * 1024 * 1024

    # --- Toolchain ---
    go_executable: str = "go"
    toolchain_timeout_seconds: float = 30.0

    def __post_init__(self):
        """Ensure all paths are absolute and the storage directory exists."""
        self.storage_dir = Path(self.storage_dir).expanduser().resolve()
        self.roots = [Path(p).expanduser().resolve() for p in self.roots]

        self.storage_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """
        Create config from environment variables.

        Supported env vars:
            GOSEARCH_ROOTS: Path-separator delimited list of workspace roots
            GOSEARCH_STORAGE_DIR: Directory holding persisted indexes
            GOSEARCH_GO: Go executable to query for GOROOT/modules
            GOSEARCH_MAX_RESULTS: Cap on combined search results
            GOSEARCH_BATCH_SIZE: Files indexed concurrently per batch
        """
        config = cls()

        if roots := os.environ.get("GOSEARCH_ROOTS"):
            config.roots = [Path(p.strip()) for p in roots.split(os.pathsep) if p.strip()]

        if storage_dir := os.environ.get("GOSEARCH_STORAGE_DIR"):
            config.storage_dir = Path(storage_dir)

        if go := os.environ.get("GOSEARCH_GO"):
            config.go_executable = go

        if max_results := os.environ.get("GOSEARCH_MAX_RESULTS"):
            config.max_results = int(max_results)

        if batch_size := os.environ.get("GOSEARCH_BATCH_SIZE"):
            config.batch_size = int(batch_size)

        config.__post_init__()
        return config

    def is_manifest(self, path: Path) -> bool:
        return path.name in self.manifest_names

    def is_source(self, path: Path) -> bool:
        return path.suffix.lower() in self.source_extensions

    def is_test_path(self, path: str) -> bool:
        return path.endswith(self.test_file_suffixes)


# Singleton default config
_default_config: IndexerConfig | None = None


def get_config() -> IndexerConfig:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = IndexerConfig.from_env()
    return _default_config


def set_config(config: IndexerConfig) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config
