"""
Updater - Incremental maintenance of a live index.

Reacts to watch events with per-trigger debouncing:

    workspace file changed/created  short debounce per path, re-index that file
    workspace file deleted          no debounce, drop the entry at once
    workspace directory deleted     no debounce, drop every entry under it
    dependency manifest changed     long global debounce, re-index dependencies
                                    only if the manifest fingerprint moved

Every mutation runs through the owner's exclusive section, so it never
overlaps a build or another mutation, and is persisted right after.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, Set, TypeVar

from .config import get_config, IndexerConfig
from .models import Domain, Index
from .indexer import IndexBuilder
from .storage import IndexStore
from .watcher import ChangeType, Debouncer, FileChange
from .errors import StorageError


logger = logging.getLogger(__name__)


T = TypeVar("T")

MANIFEST_KEY = "manifest"
FILE_KEY_PREFIX = "file:"


class IndexOwner(Protocol):
    """The component that owns the index and its single-writer lock."""

    @property
    def roots(self) -> List[Path]: ...

    async def exclusive(self, operation: Callable[[Index], Awaitable[T]]) -> Optional[T]: ...


class IncrementalUpdater:
    """
    Applies single-file and manifest-driven deltas to the owner's index.

    Holds no reference to the index itself; each operation receives it
    from the owner's exclusive section.
    """

    def __init__(
        self,
        owner: IndexOwner,
        builder: IndexBuilder,
        store: IndexStore,
        config: IndexerConfig | None = None,
    ):
        self.owner = owner
        self.builder = builder
        self.store = store
        self.config = config or get_config()

        self.debouncer = Debouncer()
        self._tasks: Set[asyncio.Task] = set()
        self._dependency_task: Optional[asyncio.Task] = None

    # ═══════════════════════════════════════════════════════════════════
    # Event intake
    # ═══════════════════════════════════════════════════════════════════

    def handle_change(self, change: FileChange) -> None:
        """Route one watch event to its trigger class. Must run on the loop."""
        path = change.path

        if not self._in_workspace(path):
            logger.debug(f"Ignoring change outside workspace: {path}")
            return

        if change.is_directory:
            if change.change_type is ChangeType.DELETED:
                self.cancel_pending_under(path)
                self._spawn(self._remove_directory(path))
            return

        if change.change_type is ChangeType.DELETED:
            self.cancel_pending(path)
            self._spawn(self._remove(path))
        else:
            self.debouncer.schedule(
                _file_key(path),
                self.config.workspace_debounce_seconds,
                lambda: self._update(path),
            )

        if self.config.is_manifest(path):
            self.schedule_dependency_update()

    def schedule_dependency_update(self) -> None:
        """(Re)start the global manifest timer."""
        self.debouncer.schedule(
            MANIFEST_KEY,
            self.config.manifest_debounce_seconds,
            self._on_manifest_timer,
        )

    async def _on_manifest_timer(self) -> None:
        # At most one dependency rebuild in flight: push the timer back
        if self.rebuilding_dependencies:
            logger.debug("Dependency rebuild still running, deferring manifest update")
            self.schedule_dependency_update()
            return

        self._dependency_task = asyncio.get_running_loop().create_task(self._replace_dependencies())
        try:
            await self._dependency_task
        finally:
            self._dependency_task = None

    @property
    def rebuilding_dependencies(self) -> bool:
        return self._dependency_task is not None and not self._dependency_task.done()

    # ═══════════════════════════════════════════════════════════════════
    # Exclusive operations
    # ═══════════════════════════════════════════════════════════════════

    async def _update(self, path: Path) -> None:
        await self.owner.exclusive(lambda index: self.apply_file_update(index, path))

    async def _remove(self, path: Path) -> None:
        await self.owner.exclusive(lambda index: self.remove_file(index, path))

    async def _remove_directory(self, directory: Path) -> None:
        await self.owner.exclusive(lambda index: self.remove_prefix(index, directory))

    async def _replace_dependencies(self) -> None:
        roots = list(self.owner.roots)
        await self.owner.exclusive(lambda index: self.replace_dependency_domain(index, roots))

    async def apply_file_update(self, index: Index, path: Path) -> bool:
        """
        Re-scan and re-index one workspace file, then persist.

        A file that can no longer be read is dropped from the index.
        """
        logger.info(f"Updating workspace file in index: {path}")
        indexed = await self.builder.index_single_file(index, Domain.WORKSPACE, path)
        if not indexed:
            index.workspace.pop(str(path), None)
        await self._persist(index, Domain.WORKSPACE)
        return indexed

    async def remove_file(self, index: Index, path: Path) -> bool:
        """Drop one file from the workspace domain and persist."""
        removed = index.workspace.pop(str(path), None) is not None
        if removed:
            logger.info(f"Removed workspace file from index: {path}")
            await self._persist(index, Domain.WORKSPACE)
        return removed

    async def remove_prefix(self, index: Index, directory: Path) -> int:
        """Drop every workspace file under a directory and persist."""
        stale = [key for key in index.workspace if Path(key).is_relative_to(directory)]
        for key in stale:
            del index.workspace[key]
        if stale:
            logger.info(f"Removed {len(stale)} workspace files under {directory}")
            await self._persist(index, Domain.WORKSPACE)
            if any(self.config.is_manifest(Path(key)) for key in stale):
                self.schedule_dependency_update()
        return len(stale)

    async def replace_dependency_domain(self, index: Index, workspace_roots: Sequence[Path]) -> bool:
        """
        Re-index dependencies if the manifest fingerprint changed.

        Returns:
            True if the dependency domain was rebuilt, False on a no-op
        """
        loop = asyncio.get_running_loop()
        fingerprint = await loop.run_in_executor(
            None, self.builder.toolchain.manifest_fingerprint, list(workspace_roots)
        )
        if fingerprint == index.manifest_fingerprint:
            logger.debug("Manifest fingerprint unchanged, skipping dependency update")
            return False

        logger.info("Updating dependency index...")
        index.manifest_fingerprint = fingerprint
        await self.builder.rebuild_dependencies(index, workspace_roots)
        await self._persist(index, Domain.DEPENDENCIES)
        logger.info("Dependency index updated")
        return True

    async def _persist(self, index: Index, domain: Domain) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.store.save, index, [domain])
        except StorageError as e:
            logger.warning(f"Failed to persist {domain.value} update: {e}")

    # ═══════════════════════════════════════════════════════════════════
    # Housekeeping
    # ═══════════════════════════════════════════════════════════════════

    def _in_workspace(self, path: Path) -> bool:
        return any(path.is_relative_to(root) for root in self.owner.roots)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for immediate (non-debounced) operations to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_pending(self, path: Path) -> bool:
        """Cancel a pending debounced update for one path."""
        return self.debouncer.cancel(_file_key(path))

    def cancel_pending_under(self, directory: Path) -> int:
        """Cancel pending debounced updates for every path under a directory."""
        cancelled = 0
        for key in self.debouncer.pending_keys():
            if key.startswith(FILE_KEY_PREFIX) and Path(key[len(FILE_KEY_PREFIX):]).is_relative_to(directory):
                cancelled += self.debouncer.cancel(key)
        return cancelled

    def cancel_all(self) -> None:
        """Cancel every pending timer and queued operation."""
        self.debouncer.cancel_all()
        for task in list(self._tasks):
            task.cancel()
        if self._dependency_task is not None:
            self._dependency_task.cancel()


def _file_key(path: Path) -> str:
    return f"{FILE_KEY_PREFIX}{path}"
