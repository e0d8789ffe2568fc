"""
Scanner - Bounded discovery and reading of Go source files.

Walks a set of root directories for one domain, yielding raw file records.
Discovery is capped per domain (cap and continue, never error) and file
reads run in a thread pool so scanning stays off the event loop.
"""

import asyncio
import logging
import os
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncGenerator, Dict, List, Optional, Sequence, Tuple

from .config import get_config, IndexerConfig
from .models import Domain, RawFile
from .errors import handle_error


logger = logging.getLogger(__name__)


@dataclass
class DiscoveryLimits:
    """Caps applied while walking the roots of a domain."""
    max_files: int
    max_depth: int
    per_root: bool            # Cap applies to each root rather than the whole domain
    include_manifests: bool


class DomainScanner:
    """
    Scans root directories for the source files of one domain.

    A missing or unreadable root yields zero files for that root. An
    individual unreadable file is skipped.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.reader_concurrency,
                thread_name_prefix="scanner"
            )
        return self._executor

    def limits_for(self, domain: Domain) -> DiscoveryLimits:
        if domain is Domain.WORKSPACE:
            return DiscoveryLimits(
                max_files=self.config.max_workspace_files,
                max_depth=self.config.max_depth,
                per_root=False,
                include_manifests=True,
            )
        if domain is Domain.STDLIB:
            return DiscoveryLimits(
                max_files=self.config.max_stdlib_files,
                max_depth=self.config.stdlib_max_depth,
                per_root=False,
                include_manifests=False,
            )
        return DiscoveryLimits(
            max_files=self.config.max_dependency_files,
            max_depth=self.config.max_depth,
            per_root=True,
            include_manifests=False,
        )

    # ═══════════════════════════════════════════════════════════════════
    # Discovery
    # ═══════════════════════════════════════════════════════════════════

    def discover(self, roots: Sequence[Path], domain: Domain) -> Tuple[List[Path], bool]:
        """
        Find candidate files under the given roots.

        Returns:
            (paths, truncated) where truncated is True if a cap was hit
        """
        limits = self.limits_for(domain)
        found: List[Path] = []
        seen: set[str] = set()
        truncated = False

        for root in roots:
            root = Path(root)
            if not root.is_dir():
                logger.info(f"Root directory not found for {domain.value}: {root}")
                continue

            budget = limits.max_files if limits.per_root else limits.max_files - len(found)
            if budget <= 0:
                truncated = True
                break

            root_files, root_truncated = self._walk(root, limits, budget)
            truncated = truncated or root_truncated
            for path in root_files:
                key = str(path)
                if key not in seen:
                    seen.add(key)
                    found.append(path)

        if truncated:
            logger.info(f"Discovery cap reached for {domain.value}: {len(found)} files")

        return found, truncated

    def _walk(self, root: Path, limits: DiscoveryLimits, budget: int) -> Tuple[List[Path], bool]:
        """Breadth-first walk of one root, bounded by depth and file budget."""
        found: List[Path] = []
        queue: deque[Tuple[Path, int]] = deque([(root, 0)])

        while queue:
            directory, depth = queue.popleft()
            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                handle_error(e, directory, "scan_directory")
                continue

            for entry in entries:
                try:
                    if entry.is_dir(follow_symlinks=False):
                        if depth + 1 < limits.max_depth and not self._should_skip_dir(entry.name):
                            queue.append((Path(entry.path), depth + 1))
                    elif entry.is_file(follow_symlinks=False):
                        if self._wants_file(entry.name, limits):
                            found.append(Path(entry.path))
                            if len(found) >= budget:
                                return found, True
                except OSError as e:
                    handle_error(e, Path(entry.path), "scan_entry")

        return found, False

    def _should_skip_dir(self, name: str) -> bool:
        """Check if a directory should be skipped."""
        return name in self.config.skip_dirs

    def _wants_file(self, name: str, limits: DiscoveryLimits) -> bool:
        path = Path(name)
        if self.config.is_source(path):
            return True
        return limits.include_manifests and self.config.is_manifest(path)

    # ═══════════════════════════════════════════════════════════════════
    # Reading
    # ═══════════════════════════════════════════════════════════════════

    def read_file(self, path: Path) -> Optional[RawFile]:
        """
        Read one file synchronously. Returns None if it cannot be read.

        Universal newline decoding keeps line numbering stable across
        platforms. Invalid UTF-8 bytes decode as replacement characters so
        the rest of the file stays searchable.
        """
        try:
            stat = path.stat()
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            handle_error(e, path, "read_file")
            return None

        return RawFile(
            path=str(path),
            content=content,
            last_modified=stat.st_mtime,
            is_manifest=self.config.is_manifest(path),
        )

    async def read_files(self, paths: Sequence[Path]) -> List[RawFile]:
        """Read a batch of files concurrently in the thread pool."""
        if not paths:
            return []

        loop = asyncio.get_running_loop()
        executor = self._get_executor()
        tasks = [loop.run_in_executor(executor, self.read_file, path) for path in paths]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        files: List[RawFile] = []
        for path, result in zip(paths, results):
            if isinstance(result, RawFile):
                files.append(result)
            elif isinstance(result, Exception):
                handle_error(result, path, "read_files")
        return files

    async def scan_batches(
        self,
        roots: Sequence[Path],
        domain: Domain,
        stats: Optional[Dict[str, int]] = None,
    ) -> AsyncGenerator[List[RawFile], None]:
        """
        Discover files, then yield them in bounded batches.

        Each batch is read concurrently; at most `batch_size` files are in
        flight at once, capping memory and open handles.
        """
        loop = asyncio.get_running_loop()
        paths, truncated = await loop.run_in_executor(
            self._get_executor(), self.discover, list(roots), domain
        )
        if stats is not None:
            stats["discovered"] = len(paths)
            stats["truncated"] = int(truncated)
            stats.setdefault("skipped", 0)

        batch_size = max(1, self.config.batch_size)
        for i in range(0, len(paths), batch_size):
            batch = paths[i:i + batch_size]
            files = await self.read_files(batch)
            if stats is not None:
                stats["skipped"] = stats.get("skipped", 0) + len(batch) - len(files)
            yield files

    def close(self):
        """Shutdown the thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None
