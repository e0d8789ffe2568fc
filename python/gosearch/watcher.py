"""
Watcher - File change detection and debounced scheduling.

Uses watchdog for cross-platform file system monitoring. Events arrive on
the observer thread and are handed to the asyncio loop; the Debouncer turns
bursts of events into single-shot, cancel-and-replace timers.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import get_config, IndexerConfig
from .models import Domain
from .scanner import DomainScanner


logger = logging.getLogger(__name__)


class ChangeType(Enum):
    """Type of file system change."""
    CHANGED = "changed"
    CREATED = "created"
    DELETED = "deleted"


@dataclass
class FileChange:
    """A file system change for a workspace source file, manifest or directory."""
    path: Path
    change_type: ChangeType
    timestamp: float
    is_directory: bool = False


class Debouncer:
    """
    Keyed single-shot timers on the asyncio loop.

    Scheduling a key that already has a pending timer cancels the old one
    and starts over, so timers never accumulate.
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule(
        self,
        key: str,
        delay: float,
        callback: Callable[[], Awaitable[None]],
    ) -> None:
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._tasks[key] = loop.create_task(self._fire(key, delay, callback))

    async def _fire(self, key: str, delay: float, callback: Callable[[], Awaitable[None]]):
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        # Fired: no longer pending, a re-schedule from inside starts fresh
        if self._tasks.get(key) is asyncio.current_task():
            del self._tasks[key]
        try:
            await callback()
        except Exception as e:
            logger.error(f"Debounced task {key} failed: {e}")

    def cancel(self, key: str) -> bool:
        """Cancel a pending timer. Returns True if one was pending."""
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)

    def is_pending(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def pending_keys(self) -> List[str]:
        return [key for key, task in self._tasks.items() if not task.done()]


class Watcher:
    """
    Real-time file system watcher for workspace roots.

    Forwards changes to Go sources and dependency manifests to `on_change`
    on the event loop that called `start()`. A move is reported as a delete
    of the old path and a create of the new one. A directory that disappears
    is reported once as a directory delete; a directory that appears is
    walked and each file in it is reported as created.
    """

    def __init__(
        self,
        config: IndexerConfig | None = None,
        on_change: Optional[Callable[[FileChange], None]] = None,
    ):
        self.config = config or get_config()
        self.on_change = on_change
        self._scanner = DomainScanner(self.config)

        self._observer: Optional[Observer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False

    def start(self, roots: List[Path] | None = None):
        """
        Start watching directories.

        Args:
            roots: Directories to watch (default: config.roots)
        """
        roots = roots or self.config.roots
        self._loop = asyncio.get_running_loop()

        watcher = self

        class EventHandler(FileSystemEventHandler):
            def on_created(self, event: FileSystemEvent):
                if event.is_directory:
                    watcher._queue_directory_created(Path(event.src_path))
                else:
                    watcher._queue_change(Path(event.src_path), ChangeType.CREATED)

            def on_modified(self, event: FileSystemEvent):
                if not event.is_directory:
                    watcher._queue_change(Path(event.src_path), ChangeType.CHANGED)

            def on_deleted(self, event: FileSystemEvent):
                if event.is_directory:
                    watcher._queue_directory_deleted(Path(event.src_path))
                else:
                    watcher._queue_change(Path(event.src_path), ChangeType.DELETED)

            def on_moved(self, event: FileSystemEvent):
                if event.is_directory:
                    watcher._queue_directory_deleted(Path(event.src_path))
                    watcher._queue_directory_created(Path(event.dest_path))
                else:
                    watcher._queue_change(Path(event.src_path), ChangeType.DELETED)
                    watcher._queue_change(Path(event.dest_path), ChangeType.CREATED)

        self._observer = Observer()
        handler = EventHandler()

        for root in roots:
            if root.is_dir():
                self._observer.schedule(handler, str(root), recursive=True)
                logger.info(f"Watching: {root}")
            else:
                logger.warning(f"Watch root not found: {root}")

        self._running = True
        self._observer.start()
        logger.info("File watcher started")

    def stop(self):
        """Stop watching."""
        self._running = False

        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None

        logger.info("File watcher stopped")

    @property
    def running(self) -> bool:
        return self._running

    def _queue_change(self, path: Path, change_type: ChangeType, is_directory: bool = False):
        """Hand a change from the observer thread to the event loop."""
        if not is_directory and self._should_skip(path):
            return

        change = FileChange(
            path=path,
            change_type=change_type,
            timestamp=time.monotonic(),
            is_directory=is_directory,
        )

        if self._loop is not None and self.on_change is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._dispatch, change)

    def _queue_directory_deleted(self, path: Path):
        if not self._in_skipped_dir(path):
            self._queue_change(path, ChangeType.DELETED, is_directory=True)

    def _queue_directory_created(self, path: Path):
        """Report every file already inside a directory that appeared."""
        if self._in_skipped_dir(path):
            return
        # Files moved in with the directory produce no events of their own
        paths, _ = self._scanner.discover([path], Domain.WORKSPACE)
        for file_path in paths:
            self._queue_change(file_path, ChangeType.CREATED)

    def _dispatch(self, change: FileChange):
        if not self._running or self.on_change is None:
            return
        try:
            self.on_change(change)
        except Exception as e:
            logger.error(f"Change handler error: {e}")

    def _should_skip(self, path: Path) -> bool:
        """Only Go sources and manifests outside skipped directories matter."""
        if not (self.config.is_source(path) or self.config.is_manifest(path)):
            return True
        return self._in_skipped_dir(path)

    def _in_skipped_dir(self, path: Path) -> bool:
        return any(part in self.config.skip_dirs for part in path.parts)
