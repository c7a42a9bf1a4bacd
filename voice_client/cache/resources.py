"""Cached host resources and the invalidation policy of their mutations.

Resources with event coverage are refreshed only by the event bridge: their
mutations never touch the cache, the host event that follows does. Resources
without coverage are invalidated explicitly once the mutation resolves.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable, Literal, TypeVar

from ..core.logger import get_logger
from ..services.api import HostAPI
from ..services.schemas import (
    AudioInputDevice,
    Command,
    DictionaryEntry,
    ListeningStatus,
    Recording,
    RecordingStateResponse,
    RunningApplication,
    WindowContext,
)
from . import keys
from .keys import QueryKey
from .queries import QueryCache


T = TypeVar("T")
Policy = Literal["event", "explicit"]

logger = get_logger("cache")

# Key families refreshed by a host event after every mutation.
EVENT_COVERED: tuple[QueryKey, ...] = (
    keys.DICTIONARY,
    keys.WINDOW_CONTEXT_LIST,
    keys.COMMANDS,
    keys.RECORDINGS,
    keys.RECORDING_STATE,
    keys.LISTENING_STATUS,
    keys.MODEL_STATUS,
)


def invalidation_policy(prefix: QueryKey) -> Policy:
    """`event` when a host event is guaranteed to follow mutations of `prefix`."""
    for covered in EVENT_COVERED:
        if keys.matches(covered, prefix):
            return "event"
    return "explicit"


class Resources:
    """Query accessors backed by the shared cache."""

    def __init__(self, cache: QueryCache, api: HostAPI, model_types: Iterable[str] = ("tdt", "eou")) -> None:
        self.cache = cache
        self.api = api
        self.model_types = tuple(model_types)

    def register_all(self) -> None:
        """Register every fetcher so invalidations can refetch."""
        for key, fetcher in self._fetchers().items():
            self.cache.register(key, fetcher)

    async def prime(self) -> None:
        """Initial fetch of every resource; failures stay in the key state."""
        for key in self._fetchers():
            try:
                await self.cache.fetch(key)
            except Exception as exc:
                logger.warning("Chargement initial en echec pour %s: %s", "/".join(key), exc)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    async def dictionary_entries(self) -> list[DictionaryEntry]:
        return await self.cache.ensure(keys.DICTIONARY_LIST, self.api.list_dictionary_entries)

    async def window_contexts(self) -> list[WindowContext]:
        return await self.cache.ensure(keys.WINDOW_CONTEXT_LIST, self.api.list_window_contexts)

    async def fresh_window_contexts(self) -> list[WindowContext]:
        """Contexts read after every write issued so far; never an older in-flight response."""
        return await self.cache.fetch(keys.WINDOW_CONTEXT_LIST, self.api.list_window_contexts, force=True)

    async def commands(self) -> list[Command]:
        return await self.cache.ensure(keys.COMMANDS, self.api.list_commands)

    async def recordings(self) -> list[Recording]:
        return await self.cache.ensure(keys.RECORDINGS, self.api.list_recordings)

    async def recording_state(self) -> RecordingStateResponse:
        return await self.cache.ensure(keys.RECORDING_STATE, self.api.get_recording_state)

    async def listening_status(self) -> ListeningStatus:
        return await self.cache.ensure(keys.LISTENING_STATUS, self.api.get_listening_status)

    async def audio_devices(self) -> list[AudioInputDevice]:
        return await self.cache.ensure(keys.AUDIO_DEVICES, self.api.list_audio_devices)

    async def running_applications(self) -> list[RunningApplication]:
        return await self.cache.ensure(keys.RUNNING_APPS, self.api.list_running_applications)

    async def model_available(self, model_type: str) -> bool:
        return await self.cache.ensure(keys.model_status(model_type), self._model_fetcher(model_type))

    def cached_window_contexts(self) -> list[WindowContext]:
        return list(self.cache.data(keys.WINDOW_CONTEXT_LIST, []))

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #
    async def mutate(self, prefix: QueryKey, call: Callable[[], Awaitable[T]]) -> T:
        """Run a mutation; invalidate `prefix` afterwards only without event coverage."""
        result = await call()
        if invalidation_policy(prefix) == "explicit":
            self.cache.invalidate(prefix)
        return result

    async def refresh(self, prefix: QueryKey) -> None:
        """Explicit user refresh (e.g. device list)."""
        self.cache.invalidate(prefix)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _fetchers(self) -> dict[QueryKey, Callable[[], Awaitable[Any]]]:
        fetchers: dict[QueryKey, Callable[[], Awaitable[Any]]] = {
            keys.LISTENING_STATUS: self.api.get_listening_status,
            keys.RECORDING_STATE: self.api.get_recording_state,
            keys.DICTIONARY_LIST: self.api.list_dictionary_entries,
            keys.WINDOW_CONTEXT_LIST: self.api.list_window_contexts,
            keys.COMMANDS: self.api.list_commands,
            keys.RECORDINGS: self.api.list_recordings,
            keys.AUDIO_DEVICES: self.api.list_audio_devices,
            keys.RUNNING_APPS: self.api.list_running_applications,
        }
        for model_type in self.model_types:
            fetchers[keys.model_status(model_type)] = self._model_fetcher(model_type)
        return fetchers

    def _model_fetcher(self, model_type: str) -> Callable[[], Awaitable[bool]]:
        async def _check() -> bool:
            return await self.api.check_model_status(model_type)

        return _check
