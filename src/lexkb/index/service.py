"""Stateful owner of the current index generation.

The service holds exactly one ``IndexGeneration`` and replaces it with a
single reference assignment, so readers that took a ``snapshot()`` keep a
consistent view while a rebuild runs.

Loading and rebuilding are single-flight: the first caller starts a
detached ``asyncio.Task`` and every concurrent caller awaits that same task
through ``asyncio.shield``. Cancelling a caller therefore never cancels the
build other callers are waiting for.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import replace
from pathlib import Path
from typing import Awaitable, Callable

from lexkb.errors import IndexBuildTimeoutError
from lexkb.index.builder import IndexBuilder
from lexkb.index.storage import CacheStore
from lexkb.models import GenerationInfo, IndexGeneration

LOGGER = logging.getLogger(__name__)

SwapListener = Callable[[IndexGeneration], None]


class IndexState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    REBUILDING = "rebuilding"


class IndexService:
    """Coordinates hydrate-or-build on first use and explicit reindexing."""

    def __init__(
        self,
        builder: IndexBuilder,
        store: CacheStore,
        *,
        kb_dir: Path,
        build_timeout: float = 600.0,
    ) -> None:
        self.builder = builder
        self.store = store
        self.kb_dir = Path(kb_dir)
        self.build_timeout = build_timeout
        self.build_count = 0
        self.last_error: BaseException | None = None
        self._generation: IndexGeneration | None = None
        self._info: GenerationInfo | None = None
        self._load_task: asyncio.Task[GenerationInfo] | None = None
        self._rebuild_task: asyncio.Task[GenerationInfo] | None = None
        self._listeners: list[SwapListener] = []

    @property
    def state(self) -> IndexState:
        if self._rebuild_task is not None and self._generation is not None:
            return IndexState.REBUILDING
        if self._load_task is not None or self._rebuild_task is not None:
            return IndexState.LOADING
        if self._generation is not None:
            return IndexState.READY
        return IndexState.UNINITIALIZED

    @property
    def info(self) -> GenerationInfo | None:
        return self._info

    def snapshot(self) -> IndexGeneration | None:
        """Current generation; never a partially built one."""
        return self._generation

    def subscribe(self, listener: SwapListener) -> None:
        """Call ``listener`` with every newly swapped-in generation."""
        self._listeners.append(listener)

    async def ensure_ready(self) -> GenerationInfo:
        """Hydrate from cache or build on first use; afterwards report ``hot``."""
        if self._generation is not None and self._info is not None:
            return replace(self._info, source="hot", duration_ms=None)
        task = self._load_task or self._rebuild_task
        if task is None:
            task = self._load_task = self._spawn(self._hydrate_or_build(), "lexkb-load")
        return await asyncio.shield(task)

    async def reindex(self) -> GenerationInfo:
        """Force a rebuild; concurrent requests share the in-flight one."""
        if self._rebuild_task is None:
            self._rebuild_task = self._spawn(self._rebuild(), "lexkb-rebuild")
        return await asyncio.shield(self._rebuild_task)

    async def close(self) -> None:
        """Cancel in-flight builds, e.g. on application shutdown."""
        tasks = [task for task in (self._load_task, self._rebuild_task) if task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _spawn(self, coro: Awaitable[GenerationInfo], name: str) -> asyncio.Task[GenerationInfo]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[GenerationInfo]) -> None:
        if task is self._load_task:
            self._load_task = None
        if task is self._rebuild_task:
            self._rebuild_task = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.last_error = exc
            LOGGER.error("Index %s failed: %s", task.get_name(), exc)

    async def _hydrate_or_build(self) -> GenerationInfo:
        generation = await asyncio.to_thread(self.store.hydrate)
        if generation is not None:
            info = GenerationInfo.describe("cache", generation, cache_path=self.store.path)
            return self._swap(generation, info)
        # A cache file that failed to hydrate is stale; a missing one was never built.
        source = "reindex" if self.store.path.exists() else "built"
        return await self._build(source)

    async def _rebuild(self) -> GenerationInfo:
        if self._load_task is not None:
            # Never run two builds at once: let a cold-start load finish first.
            await asyncio.wait({self._load_task})
        return await self._build("reindex")

    async def _build(self, source: str) -> GenerationInfo:
        self.build_count += 1
        LOGGER.info("Building index from %s (%s)", self.kb_dir, source)
        try:
            result = await asyncio.wait_for(
                self.builder.build(self.kb_dir), timeout=self.build_timeout
            )
        except asyncio.TimeoutError as exc:
            raise IndexBuildTimeoutError(
                f"index build exceeded {self.build_timeout:.0f}s"
            ) from exc

        info = GenerationInfo.describe(
            source,
            result.generation,
            cache_path=self.store.path,
            duration_ms=result.duration_ms,
        )
        try:
            await asyncio.to_thread(self.store.persist, result.generation)
        except OSError:
            LOGGER.exception("Could not persist index cache to %s", self.store.path)
        return self._swap(result.generation, info)

    def _swap(self, generation: IndexGeneration, info: GenerationInfo) -> GenerationInfo:
        self._generation = generation
        self._info = info
        self.last_error = None
        LOGGER.info(
            "Index ready (%s): %d files, %d chunks",
            info.source,
            info.file_count,
            info.chunk_count,
        )
        for listener in self._listeners:
            listener(generation)
        return info
