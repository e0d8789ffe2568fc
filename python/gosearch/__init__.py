"""
gosearch - Persisted in-memory text index for Go workspaces.

Modules:
    - config: Centralized configuration
    - models: Index, entries and search result types
    - scanner: Bounded per-domain file discovery
    - toolchain: `go` command resolver for stdlib and dependency roots
    - hasher: xxHash fingerprints and workspace identity
    - extractor: Advisory symbol extraction
    - indexer: Full index builds
    - storage: Tiered on-disk persistence
    - search: Substring queries and result ordering
    - watcher: File change detection and debouncing
    - updater: Incremental index maintenance
    - orchestrator: Index lifecycle manager and CLI

Flow:
    Load → (miss) Scan → Index → Persist → Watch → Update → Persist

Usage:
    from gosearch import IndexManager

    manager = IndexManager()
    await manager.start()
    files = manager.search_combined("ReadFile")
"""

from .orchestrator import IndexManager
from .models import Domain, SearchMode

__all__ = ["IndexManager", "Domain", "SearchMode"]
