"""Keyed cache of the last host-confirmed value of each resource."""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from ..core.errors import error_message
from ..core.logger import get_logger
from .keys import QueryKey, matches


T = TypeVar("T")
Fetcher = Callable[[], Awaitable[Any]]
CacheListener = Callable[[QueryKey], None]

logger = get_logger("cache")


@dataclass(slots=True, frozen=True)
class QueryState(Generic[T]):
    """Observable state of one cache key."""

    data: Optional[T] = None
    has_data: bool = False
    error: Optional[str] = None
    is_fetching: bool = False
    is_stale: bool = True
    updated_at: float = 0.0

    @property
    def is_loading(self) -> bool:
        """No value cached yet and a fetch is in flight."""
        return not self.has_data and self.is_fetching


@dataclass(slots=True)
class _Entry:
    state: QueryState[Any] = field(default_factory=QueryState)
    fetcher: Optional[Fetcher] = None
    task: Optional[asyncio.Task[Any]] = None
    task_generation: int = 0
    started: int = 0
    applied: int = 0
    valid_from: int = 0


class QueryCache:
    """Process-wide query cache.

    A fetch gets a generation number when it starts. Its result is applied
    only if no fetch started later has already been applied, so a slow
    response never overwrites a fresher one. Invalidation marks matching keys
    stale and refetches those with a registered fetcher.
    """

    def __init__(self) -> None:
        self._entries: dict[QueryKey, _Entry] = {}
        self._listeners: list[tuple[QueryKey, CacheListener]] = []
        self._background: set[asyncio.Task[Any]] = set()
        self._closed = False

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def get(self, key: QueryKey) -> QueryState[Any]:
        entry = self._entries.get(key)
        return entry.state if entry is not None else QueryState()

    def data(self, key: QueryKey, default: Any = None) -> Any:
        state = self.get(key)
        return state.data if state.has_data else default

    # ------------------------------------------------------------------ #
    # Subscription
    # ------------------------------------------------------------------ #
    def subscribe(self, prefix: QueryKey, listener: CacheListener) -> Callable[[], None]:
        """Listen to state changes of every key starting with `prefix`."""
        item = (prefix, listener)
        self._listeners.append(item)

        def _release() -> None:
            if item in self._listeners:
                self._listeners.remove(item)

        return _release

    # ------------------------------------------------------------------ #
    # Fetching
    # ------------------------------------------------------------------ #
    def register(self, key: QueryKey, fetcher: Fetcher) -> None:
        """Remember how to refetch `key` when it gets invalidated."""
        self._entry(key).fetcher = fetcher

    async def fetch(self, key: QueryKey, fetcher: Optional[Fetcher] = None, *, force: bool = False) -> Any:
        """Fetch `key`, sharing an in-flight request that is still current.

        `force=True` always issues a new request; it is for read-modify-write
        callers that must not build on a response started before their own
        previous write.
        """
        entry = self._entry(key)
        if fetcher is not None:
            entry.fetcher = fetcher
        if entry.fetcher is None:
            raise LookupError(f"No fetcher registered for {key!r}")

        task = entry.task
        if not force and task is not None and not task.done() and entry.task_generation >= entry.valid_from:
            return await asyncio.shield(task)
        return await asyncio.shield(self._start(key, entry))

    async def ensure(self, key: QueryKey, fetcher: Fetcher) -> Any:
        """Return the cached value when fresh, otherwise fetch it."""
        entry = self._entry(key)
        entry.fetcher = fetcher
        if entry.state.has_data and not entry.state.is_stale:
            return entry.state.data
        return await self.fetch(key)

    def invalidate(self, prefix: QueryKey) -> list[QueryKey]:
        """Mark every key under `prefix` stale and refetch the registered ones."""
        hit = [key for key in self._entries if matches(prefix, key)]
        for key in hit:
            entry = self._entries[key]
            entry.valid_from = entry.started + 1
            self._set_state(key, entry, is_stale=True)
            if entry.fetcher is not None and not self._closed:
                self._spawn(self._refetch(key))
        if hit:
            logger.debug("Invalidation %s -> %d cle(s)", "/".join(prefix), len(hit))
        return hit

    def set_data(self, key: QueryKey, data: Any) -> None:
        """Write a confirmed value directly (reserved for the single writers)."""
        entry = self._entry(key)
        entry.started += 1
        entry.applied = entry.started
        entry.valid_from = entry.started
        self._set_state(
            key,
            entry,
            data=data,
            has_data=True,
            error=None,
            is_stale=False,
            updated_at=time.monotonic(),
        )

    async def close(self) -> None:
        """Cancel in-flight fetches and drop listeners."""
        self._closed = True
        tasks = [entry.task for entry in self._entries.values() if entry.task is not None]
        tasks.extend(self._background)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        self._background.clear()
        self._listeners.clear()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _entry(self, key: QueryKey) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        return entry

    def _start(self, key: QueryKey, entry: _Entry) -> asyncio.Task[Any]:
        entry.started += 1
        generation = entry.started
        assert entry.fetcher is not None
        task = asyncio.get_running_loop().create_task(self._run(key, entry, entry.fetcher, generation))
        entry.task = task
        entry.task_generation = generation
        self._set_state(key, entry, is_fetching=True)
        return task

    async def _run(self, key: QueryKey, entry: _Entry, fetcher: Fetcher, generation: int) -> Any:
        try:
            data = await fetcher()
        except asyncio.CancelledError:
            self._finish(key, entry, generation)
            raise
        except Exception as exc:
            if generation > entry.applied:
                logger.warning("Echec du chargement %s: %s", "/".join(key), exc)
                self._finish(key, entry, generation, error=error_message(exc))
            else:
                self._finish(key, entry, generation)
            raise
        if generation > entry.applied:
            entry.applied = generation
            self._finish(
                key,
                entry,
                generation,
                data=data,
                has_data=True,
                error=None,
                is_stale=generation < entry.valid_from,
                updated_at=time.monotonic(),
            )
        else:
            logger.debug("Reponse perimee ignoree pour %s (gen %d)", "/".join(key), generation)
            self._finish(key, entry, generation)
        return data

    def _finish(self, key: QueryKey, entry: _Entry, generation: int, **changes: Any) -> None:
        if entry.task is not None and entry.task_generation == generation:
            entry.task = None
        changes["is_fetching"] = entry.task is not None and not entry.task.done()
        self._set_state(key, entry, **changes)

    async def _refetch(self, key: QueryKey) -> None:
        try:
            await self.fetch(key)
        except asyncio.CancelledError:
            raise
        except Exception:
            # Already surfaced through the key's error state.
            return

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _set_state(self, key: QueryKey, entry: _Entry, **changes: Any) -> None:
        updated = replace(entry.state, **changes)
        if updated == entry.state:
            return
        entry.state = updated
        for prefix, listener in list(self._listeners):
            if matches(prefix, key):
                listener(key)
