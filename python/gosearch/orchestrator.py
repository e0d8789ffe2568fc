"""
Orchestrator - Index lifecycle management and CLI entry point.

The IndexManager owns the one live Index of a workspace:

    start:   Load from storage → (miss) Build → Save → watch + freshness loop
    change:  Watcher → IncrementalUpdater → exclusive section → Save
    search:  lock-free read of the live index, never blocked by a build

Every mutation (build, single-file update, removal, dependency replacement)
runs under one asyncio.Lock owned here.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from .config import get_config, IndexerConfig, set_config
from .models import FileMatches, Index, IndexingStats, SearchMode, SearchResults
from .indexer import IndexBuilder, ProgressSink, report_progress
from .storage import IndexStore, list_workspace_indexes
from .search import combine_results, search_index
from .toolchain import Toolchain
from .updater import IncrementalUpdater
from .watcher import Watcher
from .hasher import workspace_identity
from .errors import StorageError


logger = logging.getLogger(__name__)


T = TypeVar("T")

StaleCallback = Callable[[str], None]


class IndexManager:
    """
    Owns the live index, its single-writer lock and the build-in-progress flag.

    Other components receive the index as an argument and never keep it.
    """

    def __init__(
        self,
        config: Optional[IndexerConfig] = None,
        toolchain: Optional[Toolchain] = None,
        on_stale: Optional[StaleCallback] = None,
    ):
        self.config = config or get_config()
        if config:
            set_config(config)

        self._roots: List[Path] = list(self.config.roots)
        self._index = Index(workspace_identity=workspace_identity(self._roots))
        self._builder = IndexBuilder(self.config, toolchain)
        self._store = IndexStore(self.config)
        self._updater = IncrementalUpdater(self, self._builder, self._store, self.config)

        self._lock = asyncio.Lock()
        self._building = False
        self._generation = 0
        self._disposed = False

        self._watcher: Optional[Watcher] = None
        self._freshness_task: Optional[asyncio.Task] = None
        self.on_stale = on_stale

    @property
    def roots(self) -> List[Path]:
        return list(self._roots)

    @property
    def identity(self) -> str:
        return self._index.workspace_identity

    @property
    def updater(self) -> IncrementalUpdater:
        return self._updater

    async def exclusive(self, operation: Callable[[Index], Awaitable[T]]) -> Optional[T]:
        """
        Run a mutation against the live index under the write lock.

        Skipped (returns None) if the workspace was switched or the manager
        disposed while the operation waited for the lock.
        """
        generation = self._generation
        async with self._lock:
            if self._disposed or generation != self._generation:
                logger.debug("Dropping index mutation queued before a workspace switch")
                return None
            return await operation(self._index)

    # ═══════════════════════════════════════════════════════════════════
    # Load / Build
    # ═══════════════════════════════════════════════════════════════════

    async def load(self) -> bool:
        """
        Try to load the persisted index for the current roots.

        Returns:
            True if a compatible, complete index was loaded
        """
        async with self._lock:
            return await self._load_locked()

    async def _load_locked(self) -> bool:
        if not self._roots:
            return False

        identity = workspace_identity(self._roots)
        manifest_fp, toolchain_fp = await self._builder.fingerprints(self._roots)

        loop = asyncio.get_running_loop()
        outcome = await loop.run_in_executor(
            None, self._store.load, identity, manifest_fp, toolchain_fp
        )
        if not outcome.ok:
            logger.info(f"No usable index for {identity}: {outcome.reason}")
            return False

        self._index = outcome.index
        return True

    async def build(self, progress: Optional[ProgressSink] = None) -> IndexingStats:
        """
        Full rebuild of every domain, then persist.

        The index is rebuilt in place; searches issued meanwhile see partial
        results and can check `is_building()`.

        Raises:
            NoWorkspaceError: if there are no workspace roots
        """
        async with self._lock:
            return await self._build_locked(progress)

    async def _build_locked(self, progress: Optional[ProgressSink]) -> IndexingStats:
        self._building = True
        try:
            stats = await self._builder.build(self._index, self._roots, progress)

            report_progress(progress, "Saving index...", 80)
            await self._save()

            report_progress(progress, "Index build complete", 100)
            return stats
        finally:
            self._building = False

    async def _save(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            reports = await loop.run_in_executor(None, self._store.save, self._index)
        except StorageError as e:
            logger.warning(f"Index built but could not be saved: {e}")
            return

        degraded = [name for name, report in reports.items() if report.degraded]
        if degraded:
            logger.warning(f"Index saved with degraded domains: {', '.join(degraded)}")

    async def rebuild(self, progress: Optional[ProgressSink] = None) -> IndexingStats:
        """User-requested rebuild, ignoring whatever is persisted."""
        logger.info("Rebuilding index...")
        return await self.build(progress)

    async def ensure_index(self, progress: Optional[ProgressSink] = None) -> bool:
        """
        Load the persisted index, building it on a miss.

        Returns:
            True if the index came from storage, False if it was built
        """
        async with self._lock:
            if await self._load_locked():
                return True
            await self._build_locked(progress)
            return False

    async def start(self, progress: Optional[ProgressSink] = None, watch: bool = True) -> bool:
        """Load-or-build, then start watching and the periodic freshness check."""
        loaded = await self.ensure_index(progress)
        if watch:
            self.start_watching()
        self.start_freshness_checks()
        return loaded

    # ═══════════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════════

    def search(self, pattern: str, mode: SearchMode = SearchMode.FUZZY) -> SearchResults:
        """Per-domain search results. Never waits for a running build."""
        return search_index(self._index, pattern, mode, self.config.max_matches_per_file)

    def search_combined(
        self,
        pattern: str,
        mode: SearchMode = SearchMode.FUZZY,
        limit: Optional[int] = None,
    ) -> List[FileMatches]:
        """Search and flatten into one ordered, capped list."""
        results = self.search(pattern, mode)
        if limit is None:
            limit = self.config.max_results
        return combine_results(results, limit, self.config.test_file_suffixes)

    def has_index(self) -> bool:
        return not self._index.is_empty()

    def is_building(self) -> bool:
        """True while a full build or a dependency re-index is mutating the index."""
        return self._building or self._updater.rebuilding_dependencies

    def stats(self) -> Dict[str, object]:
        return {
            "workspace_identity": self._index.workspace_identity,
            "last_built": self._index.last_built,
            "building": self.is_building(),
            **self._index.counts(),
        }

    # ═══════════════════════════════════════════════════════════════════
    # Mutations
    # ═══════════════════════════════════════════════════════════════════

    async def update_file(self, path: Path) -> bool:
        """Re-index one workspace file now, without debouncing."""
        path = Path(path)
        self._updater.cancel_pending(path)
        result = await self.exclusive(lambda index: self._updater.apply_file_update(index, path))
        return bool(result)

    async def remove_file(self, path: Path) -> bool:
        """Drop one workspace file from the index now."""
        path = Path(path)
        self._updater.cancel_pending(path)
        result = await self.exclusive(lambda index: self._updater.remove_file(index, path))
        return bool(result)

    async def replace_dependencies(self) -> bool:
        """Re-index dependencies now if the manifests changed."""
        roots = self.roots
        result = await self.exclusive(
            lambda index: self._updater.replace_dependency_domain(index, roots)
        )
        return bool(result)

    async def switch_workspace(
        self,
        roots: Sequence[Path],
        progress: Optional[ProgressSink] = None,
    ) -> bool:
        """
        Move to a new set of workspace roots.

        Pending work for the old workspace is dropped and nothing more is
        persisted under the old identity. The new workspace is loaded, or
        built if it has no usable persisted index.

        Returns:
            True if the new workspace's index came from storage
        """
        new_roots = [Path(r).expanduser().resolve() for r in roots]
        if workspace_identity(new_roots) == workspace_identity(self._roots):
            logger.debug("Workspace roots unchanged")
            return self.has_index()

        logger.info(f"Switching workspace to {workspace_identity(new_roots)}")
        watching = self._watcher is not None
        self.stop_watching()
        self._updater.cancel_all()
        self._generation += 1

        async with self._lock:
            self._roots = new_roots
            self._index = Index(workspace_identity=workspace_identity(new_roots))
            loaded = await self._load_locked()
            if not loaded and new_roots:
                await self._build_locked(progress)

        if watching and new_roots:
            self.start_watching()
        return loaded

    # ═══════════════════════════════════════════════════════════════════
    # Freshness
    # ═══════════════════════════════════════════════════════════════════

    async def check_freshness(self) -> Optional[str]:
        """
        Advisory staleness check. Never mutates the index.

        Once the index is older than the staleness window, compares the
        stored fingerprints with the current ones and reports through
        `on_stale` when they differ.

        Returns:
            The reason a rebuild is suggested, or None
        """
        index = self._index
        if self._building or index.last_built <= 0:
            return None
        if time.time() - index.last_built <= self.config.staleness_window_seconds:
            return None

        manifest_fp, toolchain_fp = await self._builder.fingerprints(self._roots)
        reason = None
        if manifest_fp != index.manifest_fingerprint:
            reason = "Go dependencies may have changed"
        elif toolchain_fp != index.toolchain_fingerprint:
            reason = "Go version may have changed"

        if reason:
            logger.info(f"Index outdated: {reason}, suggesting rebuild")
            if self.on_stale is not None:
                try:
                    self.on_stale(reason)
                except Exception as e:
                    logger.error(f"Stale callback failed: {e}")
        return reason

    def start_freshness_checks(self) -> None:
        if self._freshness_task is None or self._freshness_task.done():
            self._freshness_task = asyncio.get_running_loop().create_task(self._freshness_loop())

    async def _freshness_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.freshness_check_interval_seconds)
            try:
                await self.check_freshness()
            except Exception as e:
                logger.error(f"Freshness check failed: {e}")

    # ═══════════════════════════════════════════════════════════════════
    # Watching
    # ═══════════════════════════════════════════════════════════════════

    def start_watching(self) -> None:
        """Forward workspace changes to the incremental updater."""
        if self._watcher is not None:
            return
        self._watcher = Watcher(self.config, on_change=self._updater.handle_change)
        self._watcher.start(self._roots)

    def stop_watching(self) -> None:
        if self._watcher:
            self._watcher.stop()
            self._watcher = None

    async def dispose(self) -> None:
        """Release the watcher, timers and background tasks."""
        self._disposed = True
        self.stop_watching()
        self._updater.cancel_all()

        if self._freshness_task is not None:
            self._freshness_task.cancel()
            try:
                await self._freshness_task
            except asyncio.CancelledError:
                pass
            self._freshness_task = None

        self._builder.close()


# ═══════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════

def _print_progress(message: str, percent: int) -> None:
    print(f"[{percent:3d}%] {message}")


def _print_results(manager: IndexManager, pattern: str, mode: SearchMode, limit: int) -> None:
    if manager.is_building():
        print("Index is rebuilding, results may be incomplete")

    files = manager.search_combined(pattern, mode, limit)
    if not files:
        print(f"No matches for {pattern!r}")
        return

    for fm in files:
        print(f"{fm.path} ({fm.domain.value})")
        for match in fm.matches:
            print(f"  {match.line_number + 1}: {match.line.strip()}")
    print(f"\n{len(files)} files")


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="In-memory Go source search index")
    parser.add_argument("--roots", nargs="+", help="Workspace roots (default: current directory)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    commands = parser.add_subparsers(dest="command", required=True)

    build_cmd = commands.add_parser("build", help="Build (or load) the index")
    build_cmd.add_argument("--force", action="store_true", help="Rebuild even if a persisted index is usable")

    search_cmd = commands.add_parser("search", help="Search the index")
    search_cmd.add_argument("pattern", help="Text to search for")
    search_cmd.add_argument("--exact", action="store_true", help="Case-sensitive matching")
    search_cmd.add_argument("--limit", type=int, help="Maximum number of files to show")

    commands.add_parser("list", help="List persisted indexes")
    commands.add_parser("watch", help="Keep the index up to date until interrupted")

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s"
    )

    config = IndexerConfig.from_env()
    if args.roots:
        config.roots = [Path(r).expanduser().resolve() for r in args.roots]

    if args.command == "list":
        for info in list_workspace_indexes(config.storage_dir):
            legacy = " (legacy)" if info.legacy else ""
            print(
                f"{info.workspace_name}{legacy}  {info.last_built:%Y-%m-%d %H:%M}  "
                f"{info.size_bytes / 1024:.0f} KB  {info.path}"
            )
        return

    if args.command == "search" and len(args.pattern) < config.min_query_length:
        parser.error(f"pattern must be at least {config.min_query_length} characters")

    async def _main():
        manager = IndexManager(config)

        try:
            if args.command == "build":
                if args.force:
                    stats = await manager.rebuild(_print_progress)
                    print(f"\n{stats}")
                else:
                    loaded = await manager.ensure_index(_print_progress)
                    print("Loaded persisted index" if loaded else "Built new index")
                print(manager.stats())

            elif args.command == "search":
                await manager.ensure_index(_print_progress)
                mode = SearchMode.EXACT if args.exact else SearchMode.FUZZY
                _print_results(manager, args.pattern, mode, args.limit or config.max_results)

            elif args.command == "watch":
                manager.on_stale = lambda reason: print(f"{reason}. Run `gosearch build --force` to update.")
                await manager.start(_print_progress)
                print("\nWatching for changes (Ctrl+C to stop)...")
                await asyncio.Event().wait()

        finally:
            await manager.dispose()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        print("\nStopped.")


if __name__ == "__main__":
    main()
