"""SourceWatcher: watchdog event handler that discovers files matching a path or glob."""

import asyncio
import glob
import logging
import os
import time
from pathlib import Path, PurePath
from typing import Callable

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from log_tailer.errors import SourceAccessError

logger = logging.getLogger(__name__)

_GLOB_CHARS = ("*", "?", "[")


def _has_glob(part: str) -> bool:
    return any(c in part for c in _GLOB_CHARS)


def watch_root(pattern: str) -> tuple[str, bool]:
    """Return (directory to watch, recursive) for an absolute path or glob.

    The root is the longest glob-free directory prefix. Watching is recursive
    only when a directory component of the pattern holds a glob.
    """
    parts = Path(pattern).parts
    for idx, part in enumerate(parts):
        if _has_glob(part):
            return str(Path(*parts[:idx])), idx < len(parts) - 1
    return str(Path(pattern).parent), False


class SourceWatcher(FileSystemEventHandler):
    """Reports each file matching ``pattern`` once per creation, after its writes settle.

    Watchdog callbacks run on the observer thread and are handed to the event
    loop; discovery bookkeeping is only touched on the loop thread.
    """

    def __init__(
        self,
        pattern: str,
        on_discovered: Callable[[str], None],
        settle_interval: float = 2.0,
        settle_poll: float = 0.1,
        settle_timeout: float = 30.0,
        use_polling: bool = False,
    ):
        super().__init__()
        self.pattern = os.path.abspath(pattern)
        self._on_discovered = on_discovered
        self._settle_interval = settle_interval
        self._settle_poll = settle_poll
        self._settle_timeout = settle_timeout
        self._use_polling = use_polling
        self._root, self._recursive = watch_root(self.pattern)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer = None
        self._known: dict[str, int] = {}           # path -> inode
        self._settling: dict[str, asyncio.Task] = {}
        self.ready = asyncio.Event()

    @property
    def known_files(self) -> list[str]:
        return sorted(self._known)

    def matches(self, path: str) -> bool:
        return PurePath(path).match(self.pattern)

    async def start(self):
        """Establish the watch, scan existing matches, then signal ready."""
        self._loop = asyncio.get_running_loop()

        root, recursive = self._root, self._recursive
        while not os.path.isdir(root):
            parent = os.path.dirname(root)
            if parent == root:
                break
            root, recursive = parent, True
        if root != self._root:
            logger.info("%s does not exist yet, watching %s", self._root, root)

        if not os.access(root, os.R_OK | os.X_OK):
            raise SourceAccessError(f"Cannot watch {self.pattern}: permission denied on {root}")

        observer = PollingObserver() if self._use_polling else Observer()
        try:
            observer.schedule(self, root, recursive=recursive)
            observer.start()
        except OSError as e:
            raise SourceAccessError(f"Cannot watch {self.pattern}: {e}") from e
        self._observer = observer
        logger.info("Watching directory: %s (pattern=%s, recursive=%s)", root, self.pattern, recursive)

        initial = sorted(p for p in glob.glob(self.pattern) if os.path.isfile(p))
        for path in initial:
            self._consider(os.path.abspath(path))
        self.ready.set()
        logger.info("Initial scan of %s complete: %d match(es)", self.pattern, len(initial))

    async def stop(self):
        for task in self._settling.values():
            task.cancel()
        self._settling.clear()
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join, 5)
            self._observer = None

    # watchdog callbacks (observer thread)

    def on_created(self, event):
        if not event.is_directory:
            self._dispatch(self._consider, event.src_path)

    def on_moved(self, event):
        if event.is_directory:
            return
        self._dispatch(self._forget, event.src_path)
        self._dispatch(self._consider, event.dest_path)

    def on_modified(self, event):
        # Catches files whose creation event was missed, e.g. written before the watch was up
        if not event.is_directory:
            self._dispatch(self._consider, event.src_path)

    def on_deleted(self, event):
        if not event.is_directory:
            self._dispatch(self._forget, event.src_path)

    def _dispatch(self, fn, path):
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(fn, os.path.abspath(path))
        except RuntimeError:
            # loop closed between the check and the call
            pass

    # event loop side

    def _consider(self, path: str):
        if path in self._settling or not self.matches(path):
            return
        try:
            stat = os.stat(path)
        except OSError:
            return
        if self._known.get(path) == stat.st_ino:
            return
        task = asyncio.get_running_loop().create_task(self._settle(path))
        self._settling[path] = task

    def _forget(self, path: str):
        if self._known.pop(path, None) is not None:
            logger.info("File removed: %s", path)
        task = self._settling.pop(path, None)
        if task is not None:
            task.cancel()

    async def _settle(self, path: str):
        """Wait until size and mtime hold still for settle_interval, then report the file.

        A file that never goes quiet (a busy log) is reported after settle_timeout.
        """
        try:
            last = None
            started = stable_since = time.monotonic()
            while True:
                try:
                    stat = os.stat(path)
                except FileNotFoundError:
                    logger.debug("File vanished while settling: %s", path)
                    return
                current = (stat.st_size, stat.st_mtime_ns, stat.st_ino)
                now = time.monotonic()
                if current != last:
                    last = current
                    stable_since = now
                elif now - stable_since >= self._settle_interval:
                    break
                if now - started >= self._settle_timeout:
                    logger.info("%s is still being written after %.0fs, tailing it anyway", path, self._settle_timeout)
                    break
                await asyncio.sleep(self._settle_poll)
        finally:
            if self._settling.get(path) is asyncio.current_task():
                del self._settling[path]

        self._known[path] = last[2]
        logger.info("Discovered file: %s", path)
        try:
            self._on_discovered(path)
        except Exception:
            logger.exception("Discovery callback failed for %s", path)
