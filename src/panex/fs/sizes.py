"""Background directory-size resolution with a fixed concurrency bound."""

from __future__ import annotations

import asyncio
import collections
from typing import Callable, Protocol

from panex.fs.entries import FileEntry, is_within
from panex.runtime_logging import get_runtime_logger

SizeCallback = Callable[[str, str, int], None]


class SizeSource(Protocol):
    async def get_dir_size(self, path: str) -> int: ...


class SizeCache:
    """Shared ``path -> bytes`` map; last writer wins."""

    def __init__(self) -> None:
        self._sizes: dict[str, int] = {}

    def get(self, path: str) -> int | None:
        return self._sizes.get(path)

    def set(self, path: str, size: int) -> None:
        self._sizes[path] = size

    def invalidate(self, path: str) -> int:
        stale = [key for key in self._sizes if is_within(key, path)]
        for key in stale:
            del self._sizes[key]
        return len(stale)

    def clear(self) -> None:
        self._sizes.clear()

    def __contains__(self, path: object) -> bool:
        return path in self._sizes

    def __len__(self) -> int:
        return len(self._sizes)


class DirectorySizeScheduler:
    """FIFO of ``(pane_id, entry)`` pairs drained at most ``concurrency`` at a time.

    A path that is cached, queued or in flight is never enqueued again, so two
    panes showing the same directory share a single backend call. A path whose
    walk failed stays unresolved until ``invalidate`` covers it.
    """

    def __init__(
        self,
        fs: SizeSource,
        cache: SizeCache,
        *,
        concurrency: int = 2,
        on_resolved: SizeCallback | None = None,
    ) -> None:
        self.fs = fs
        self.cache = cache
        self.concurrency = max(1, concurrency)
        self.on_resolved = on_resolved
        self._queue: collections.deque[tuple[str, FileEntry]] = collections.deque()
        self._pending: set[str] = set()
        self._failed: set[str] = set()
        self._active = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self.logger = get_runtime_logger().bind(component="sizes")

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return len(self._queue)

    def enqueue(self, pane_id: str, entry: FileEntry) -> bool:
        if not entry.is_dir:
            return False
        if entry.path in self.cache or entry.path in self._pending or entry.path in self._failed:
            return False
        self._pending.add(entry.path)
        self._queue.append((pane_id, entry))
        self._idle.clear()
        self._drain()
        return True

    def enqueue_many(self, pane_id: str, entries: list[FileEntry] | tuple[FileEntry, ...]) -> int:
        return sum(1 for entry in entries if self.enqueue(pane_id, entry))

    def invalidate(self, path: str) -> None:
        dropped = self.cache.invalidate(path)
        failed = {key for key in self._failed if is_within(key, path)}
        self._failed -= failed
        dropped += len(failed)
        if dropped:
            self.logger.debug("sizes.invalidated", path=path, count=dropped)

    async def wait_idle(self) -> None:
        await self._idle.wait()

    def _drain(self) -> None:
        while self._queue and self._active < self.concurrency:
            pane_id, entry = self._queue.popleft()
            self._active += 1
            task = asyncio.create_task(self._run(pane_id, entry))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, pane_id: str, entry: FileEntry) -> None:
        try:
            size = await self.fs.get_dir_size(entry.path)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("sizes.task.failed", path=entry.path, error=str(exc))
            self._failed.add(entry.path)
        else:
            self.cache.set(entry.path, size)
            self.logger.debug("sizes.task.resolved", path=entry.path, size=size)
            if self.on_resolved is not None:
                self.on_resolved(pane_id, entry.path, size)
        finally:
            self._pending.discard(entry.path)
            self._active -= 1
            self._drain()
            if not self._queue and self._active == 0:
                self._idle.set()
