"""
Indexer - Builds the in-memory index from scanned domains.

Domains are indexed sequentially (workspace, standard library, dependencies)
while files inside a domain are read and indexed in bounded concurrent
batches. Per-file failures are swallowed; a domain whose roots cannot be
resolved simply indexes as empty.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .config import get_config, IndexerConfig
from .models import Domain, Index, IndexedFile, IndexingStats, RawFile
from .scanner import DomainScanner
from .extractor import extract_manifest_symbols, extract_symbols
from .toolchain import GoToolchain, Toolchain
from .hasher import workspace_identity
from .errors import NoWorkspaceError, handle_error


logger = logging.getLogger(__name__)


ProgressSink = Callable[[str, int], None]


def index_file(raw: RawFile) -> Optional[IndexedFile]:
    """
    Turn a raw file into an index entry.

    Stores both the original and the lowercase content. Returns None if
    indexing fails for any reason.
    """
    try:
        if raw.is_manifest:
            symbols = extract_manifest_symbols(raw.content)
        else:
            symbols = extract_symbols(raw.content)
        return IndexedFile.from_content(
            path=raw.path,
            content=raw.content,
            last_modified=raw.last_modified,
            symbols=symbols,
        )
    except Exception as e:
        handle_error(e, Path(raw.path), "index_file")
        return None


class IndexBuilder:
    """
    Orchestrates the domain scanner over all domains to produce a full index.

    The builder never keeps a reference to the index it fills; callers pass
    it in on every call.
    """

    def __init__(
        self,
        config: IndexerConfig | None = None,
        toolchain: Toolchain | None = None,
        scanner: DomainScanner | None = None,
    ):
        self.config = config or get_config()
        self.toolchain = toolchain or GoToolchain(self.config)
        self.scanner = scanner or DomainScanner(self.config)

    async def build(
        self,
        index: Index,
        workspace_roots: Sequence[Path],
        progress: Optional[ProgressSink] = None,
    ) -> IndexingStats:
        """
        Rebuild every domain of `index` from scratch.

        Steps, in order: clear all domains, refresh identity and
        fingerprints, then index workspace, standard library and
        dependencies. Persisting is left to the caller.

        Raises:
            NoWorkspaceError: if there are no workspace roots at all
        """
        roots = [Path(r) for r in workspace_roots]
        if not roots:
            raise NoWorkspaceError("cannot build an index without workspace roots")

        start_time = time.monotonic()
        stats = IndexingStats()

        # Step 1: clear
        index.clear()

        # Step 2: identity and fingerprints
        report_progress(progress, "Computing fingerprints...", 0)
        index.workspace_identity = workspace_identity(roots)
        index.manifest_fingerprint, index.toolchain_fingerprint = await self.fingerprints(roots)

        # Step 3: workspace
        report_progress(progress, "Indexing workspace files...", 20)
        stats.workspace_files = await self.index_domain(index, Domain.WORKSPACE, roots, stats)

        # Step 4: standard library
        report_progress(progress, "Indexing Go standard library...", 40)
        stdlib_roots = await self._call(self.toolchain.resolve_stdlib_roots)
        stats.stdlib_files = await self.index_domain(index, Domain.STDLIB, stdlib_roots, stats)

        # Step 5: dependencies
        report_progress(progress, "Indexing Go dependencies...", 60)
        stats.dependency_files = await self._index_dependencies(index, roots, stats)

        index.last_built = time.time()
        stats.duration_seconds = time.monotonic() - start_time
        logger.info(f"Index built for {index.workspace_identity}: {stats}")
        return stats

    async def rebuild_dependencies(self, index: Index, workspace_roots: Sequence[Path]) -> int:
        """Clear and re-index only the dependencies domain."""
        index.dependencies.clear()
        count = await self._index_dependencies(index, [Path(r) for r in workspace_roots])
        logger.info(f"Dependency domain re-indexed: {count} files")
        return count

    async def fingerprints(self, workspace_roots: Sequence[Path]) -> tuple[str, str]:
        """Current (manifest, toolchain) fingerprints."""
        manifest = await self._call(self.toolchain.manifest_fingerprint, list(workspace_roots))
        toolchain = await self._call(self.toolchain.toolchain_fingerprint)
        return manifest, toolchain

    async def dependency_roots(self, workspace_roots: Sequence[Path]) -> List[Path]:
        """Resolved module directories for every workspace root."""
        directories: List[Path] = []
        for root in workspace_roots:
            locations = await self._call(self.toolchain.resolve_dependency_roots, Path(root))
            for location in locations:
                if location.directory not in directories:
                    directories.append(location.directory)
        return directories

    async def _index_dependencies(
        self,
        index: Index,
        workspace_roots: Sequence[Path],
        stats: Optional[IndexingStats] = None,
    ) -> int:
        directories = await self.dependency_roots(workspace_roots)
        if not directories:
            logger.info("No dependency paths found")
            return 0
        return await self.index_domain(index, Domain.DEPENDENCIES, directories, stats)

    async def index_domain(
        self,
        index: Index,
        domain: Domain,
        roots: Sequence[Path],
        stats: Optional[IndexingStats] = None,
    ) -> int:
        """
        Scan and index one domain in bounded concurrent batches.

        Files that were discovered but could not be read or indexed are
        counted into `stats.skipped_files`; a discovery cap marks the domain
        in `stats.capped_domains`.

        Returns:
            Number of files added to the domain
        """
        target = index.domain(domain)
        loop = asyncio.get_running_loop()
        counters: Dict[str, int] = {}
        added = 0
        failed = 0

        async for batch in self.scanner.scan_batches(roots, domain, counters):
            entries = await loop.run_in_executor(None, _index_batch, batch)
            for entry in entries:
                target[entry.path] = entry
            added += len(entries)
            failed += len(batch) - len(entries)

        skipped = counters.get("skipped", 0) + failed
        if stats is not None:
            stats.skipped_files += skipped
            if counters.get("truncated"):
                stats.capped_domains.append(domain.value)

        logger.info(f"Indexed {added} {domain.value} files from {len(roots)} roots ({skipped} skipped)")
        return added

    async def index_single_file(self, index: Index, domain: Domain, path: Path) -> bool:
        """
        Re-read and re-index one file in place.

        Returns:
            True if the file was (re)indexed, False if it could not be read
        """
        loop = asyncio.get_running_loop()
        raw = await loop.run_in_executor(None, self.scanner.read_file, path)
        if raw is None:
            return False
        entry = index_file(raw)
        if entry is None:
            return False
        index.domain(domain)[entry.path] = entry
        return True

    async def _call(self, func, *args):
        """Run a blocking toolchain query off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def close(self):
        self.scanner.close()


def _index_batch(batch: List[RawFile]) -> List[IndexedFile]:
    entries: List[IndexedFile] = []
    for raw in batch:
        entry = index_file(raw)
        if entry is not None:
            entries.append(entry)
    return entries


def report_progress(progress: Optional[ProgressSink], message: str, percent: int) -> None:
    """Best-effort progress signaling; a failing sink never breaks a build."""
    if progress is None:
        return
    try:
        progress(message, percent)
    except Exception as e:
        logger.debug(f"Progress sink failed: {e}")
