"""Watch a folder for new screenshots and emit them once they stop changing.

watchdog's observer thread only forwards paths into the event loop. A sweeper
task polls the DebounceTracker, checks that due files have a stable non-zero
size, reads them with aiofiles and queues them for `stable_files()`.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional, Set

import aiofiles
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from services.watcher.debounce_tracker import (
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_DEBOUNCE_SECONDS,
    DebounceTracker,
)
from services.watcher.screenshot_filter import (
    DEFAULT_EXTENSIONS,
    DEFAULT_PATTERNS,
    is_screenshot_file,
)

LOGGER = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 0.1
STABILITY_INTERVAL_SECONDS = 0.1
MAX_READ_ATTEMPTS = 3


@dataclass(frozen=True)
class StableFile:
    """A screenshot whose size stopped changing, with its bytes."""

    path: str
    size: int
    data: bytes = field(repr=False, default=b"")


class _ForwardingHandler(FileSystemEventHandler):
    """Hand matching paths from the observer thread to the event loop."""

    def __init__(self, watcher: "DesktopWatcher", loop: asyncio.AbstractEventLoop) -> None:
        super().__init__()
        self._watcher = watcher
        self._loop = loop

    def _forward(self, raw_path) -> None:
        if isinstance(raw_path, bytes):
            raw_path = raw_path.decode("utf-8", errors="replace")
        if not self._watcher.matches(raw_path):
            return
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._watcher.on_path_event, raw_path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # macOS renames the hidden temp file into place; only the destination matters.
        if not event.is_directory:
            self._forward(event.dest_path)


class DesktopWatcher:
    """Debounced screenshot watcher for one directory.

    A watcher runs once: `start()` after `stop()` raises RuntimeError.

    Args:
        directory: Folder to watch (not recursive).
        max_bytes: Files larger than this are rejected with a warning.
        debounce_seconds: Quiet period before a path is checked.
        cooldown_seconds: Suppression window after a path finished.
    """

    def __init__(
        self,
        directory: str,
        *,
        max_bytes: int,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        patterns: Iterable[str] = DEFAULT_PATTERNS,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
        stability_interval: float = STABILITY_INTERVAL_SECONDS,
    ) -> None:
        self.directory = os.path.abspath(os.path.expanduser(directory))
        self.max_bytes = max_bytes
        self.patterns = tuple(patterns)
        self.extensions = tuple(extensions)
        self.sweep_interval = sweep_interval
        self.stability_interval = stability_interval
        self.tracker = DebounceTracker(debounce_seconds, cooldown_seconds)
        self._ready: "asyncio.Queue[Optional[StableFile]]" = asyncio.Queue()
        self._observer: Optional[Observer] = None
        self._sweeper: Optional[asyncio.Task] = None
        self._checks: Set[asyncio.Task] = set()
        self._started = False
        self._stopped = False
        self._iterating = False

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    def matches(self, path: str) -> bool:
        return is_screenshot_file(path, self.patterns, self.extensions)

    async def start(self) -> None:
        """Start the observer thread and the sweeper task.

        Raises:
            RuntimeError: If the watcher was already started or stopped.
            FileNotFoundError: If the directory does not exist.
        """
        if self._stopped:
            raise RuntimeError("DesktopWatcher cannot be restarted after stop()")
        if self._started:
            raise RuntimeError("DesktopWatcher is already running")
        if not os.path.isdir(self.directory):
            raise FileNotFoundError(f"Watch directory not found: {self.directory}")

        loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(_ForwardingHandler(self, loop), self.directory, recursive=False)
        observer.start()
        self._observer = observer
        self._sweeper = asyncio.create_task(self._sweep())
        self._started = True
        LOGGER.info("Watching %s for screenshots", self.directory)

    async def stop(self) -> None:
        """Stop the observer, the sweeper and pending checks, then end `stable_files()`."""
        if self._stopped:
            return
        self._stopped = True
        if self._observer is not None:
            observer = self._observer
            self._observer = None
            observer.stop()
            await asyncio.to_thread(observer.join, 5.0)
        tasks = [t for t in (self._sweeper, *self._checks) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._checks.clear()
        self.tracker.clear()
        self._ready.put_nowait(None)
        LOGGER.info("Stopped watching %s", self.directory)

    def on_path_event(self, path: str) -> None:
        """Called on the loop thread for each matching filesystem event."""
        if self._stopped:
            return
        if self.tracker.touch(path, time.monotonic()):
            LOGGER.debug("Debouncing %s", path)

    def release(self, path: str) -> None:
        """Mark a submitted path finished; later events for it hit the cooldown."""
        self.tracker.release(path, time.monotonic())

    def stable_files(self) -> AsyncIterator[StableFile]:
        """Return the single async iterator of verified screenshots.

        Raises:
            RuntimeError: If called more than once.
        """
        if self._iterating:
            raise RuntimeError("stable_files() can only be consumed once")
        self._iterating = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StableFile]:
        while True:
            stable = await self._ready.get()
            if stable is None:
                return
            yield stable

    async def _sweep(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            for path in self.tracker.due(time.monotonic()):
                task = asyncio.create_task(self._check(path))
                self._checks.add(task)
                task.add_done_callback(self._checks.discard)

    async def _check(self, path: str) -> None:
        try:
            first = await asyncio.to_thread(os.path.getsize, path)
            await asyncio.sleep(self.stability_interval)
            second = await asyncio.to_thread(os.path.getsize, path)
        except FileNotFoundError:
            LOGGER.debug("Screenshot %s disappeared before processing", path)
            self.tracker.release(path)
            return
        except OSError as exc:
            self._retry_or_drop(path, exc)
            return

        if first == 0 or first != second:
            self.tracker.reschedule(path, time.monotonic())
            return
        if second > self.max_bytes:
            LOGGER.warning("Skipping %s: %d bytes exceeds the %d byte limit", path, second, self.max_bytes)
            self.release(path)
            return

        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except OSError as exc:
            self._retry_or_drop(path, exc)
            return

        self._ready.put_nowait(StableFile(path=path, size=len(data), data=data))

    def _retry_or_drop(self, path: str, exc: OSError) -> None:
        attempts = self.tracker.record_failure(path)
        if attempts >= MAX_READ_ATTEMPTS:
            LOGGER.warning("Dropping %s after %d failed reads: %s", Path(path).name, attempts, exc)
            self.tracker.release(path)
        else:
            self.tracker.reschedule(path, time.monotonic())
