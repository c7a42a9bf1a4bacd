"""Process-wide client engine: wiring, startup and teardown."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Optional

from .cache import keys
from .cache.queries import QueryCache
from .cache.resources import Resources
from .core.config import Settings, get_settings
from .core.logger import get_logger
from .runtime.assignments import assigned_context_ids, contexts_by_entity_id
from .runtime.controller import ClientController
from .runtime.event_bridge import EventBridge
from .runtime.overrides import effective_entities
from .services.api import HostAPI
from .services.host import Host
from .services.schemas import Command, DictionaryEntry, EntityKind, WindowContext
from .state.app_state import AppState, ListeningState, ModelStatus
from .state.signals import TransientSignalStore
from .state.status import AppStatus, app_status


ChangeListener = Callable[[str], None]

logger = get_logger("client")

_current: Optional["ClientApp"] = None


class ClientApp:
    """Owns the state, the cache, the signal store and the event bridge.

    Everything is created here and lives until `stop()`; a single instance is
    expected per process (see `current_app`).
    """

    def __init__(self, host: Host, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.host = host
        self.api = HostAPI(host)
        self.state = AppState()
        self.cache = QueryCache()
        self.signals = TransientSignalStore(
            wake_word_decay_ms=self.settings.wake_word_decay_ms,
            audio_level_interval_ms=self.settings.audio_level_interval_ms,
            model_types=self.settings.model_types,
        )
        self.resources = Resources(self.cache, self.api, self.settings.model_types)
        self.bridge = EventBridge(host, self.state, self.signals, self.cache)
        self.controller = ClientController(
            self.api,
            self.resources,
            self.signals,
            delete_policy=self.settings.entity_delete_policy,
        )
        self._index: dict[EntityKind, dict[str, list[WindowContext]]] = {"command": {}, "dictionary": {}}
        self._releases: list[Callable[[], None]] = []
        self._started = False
        self._stopped = False
        self._auto_started = False

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def start(self, *, prime: bool = True) -> None:
        """Subscribe to host events, then load the initial queries.

        A failure part-way tears down whatever was already set up before
        propagating.
        """
        global _current
        if self._started:
            return
        self._started = True
        _current = self
        try:
            self.resources.register_all()
            self._releases.append(self.cache.subscribe(keys.WINDOW_CONTEXT_LIST, self._rebuild_index))
            self._releases.append(self.cache.subscribe(keys.MODEL_STATUS, self._fold_model_status))
            await self.bridge.start()
            if self._stopped:
                return
            logger.info("Client demarre (hote %s)", self.settings.host_base_url)
            if prime:
                await self.resources.prime()
        except BaseException:
            logger.warning("Demarrage du client interrompu")
            await self.stop()
            raise
        await self._auto_start_listening()

    async def _auto_start_listening(self) -> None:
        # Once per instance; a failure never blocks startup.
        if self._auto_started or self._stopped or not self.settings.auto_start_listening:
            return
        self._auto_started = True
        try:
            await self.controller.enable_listening(self.settings.selected_device)
        except Exception as exc:
            logger.warning("Ecoute automatique au demarrage en echec: %s", exc)

    async def stop(self) -> None:
        """Release subscriptions, cancel timers and in-flight fetches."""
        global _current
        if self._stopped:
            return
        self._stopped = True
        self.bridge.stop()
        while self._releases:
            self._releases.pop()()
        self.signals.close()
        await self.cache.close()
        if _current is self:
            _current = None
        logger.info("Client arrete")

    async def __aenter__(self) -> "ClientApp":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Notify `listener` with a source name on any slice, signal or action-error change."""
        releases = [
            self.state.subscribe(lambda name: listener(name)),
            self.signals.subscribe(lambda name: listener(name)),
            self.controller.subscribe_errors(lambda action: listener(f"action:{action}")),
        ]

        def _release() -> None:
            while releases:
                releases.pop()()

        return _release

    # ------------------------------------------------------------------ #
    # Views
    # ------------------------------------------------------------------ #
    @property
    def listening(self) -> ListeningState:
        """Listening slice with the current wake-word pulse."""
        return replace(self.state.listening, is_wake_word_detected=self.signals.wake_word_detected)

    @property
    def status(self) -> AppStatus:
        return app_status(self.state.recording, self.state.transcription, self.listening)

    def model_status(self, model_type: str) -> ModelStatus:
        return self.signals.model_status(model_type)

    def contexts_for(self, entity_id: str, kind: EntityKind) -> list[WindowContext]:
        return list(self._index[kind].get(entity_id, []))

    def assigned_context_ids(self, entity_id: str, kind: EntityKind) -> list[str]:
        return assigned_context_ids(entity_id, self._index[kind])

    def effective_commands(self, context: WindowContext) -> list[Command]:
        return effective_entities(context, self.cache.data(keys.COMMANDS, []), "command")

    def effective_dictionary(self, context: WindowContext) -> list[DictionaryEntry]:
        return effective_entities(context, self.cache.data(keys.DICTIONARY_LIST, []), "dictionary")

    # ------------------------------------------------------------------ #
    # Cache listeners
    # ------------------------------------------------------------------ #
    def _rebuild_index(self, key: keys.QueryKey) -> None:
        contexts = self.resources.cached_window_contexts()
        self._index = {
            "command": contexts_by_entity_id(contexts, "command"),
            "dictionary": contexts_by_entity_id(contexts, "dictionary"),
        }

    def _fold_model_status(self, key: keys.QueryKey) -> None:
        query = self.cache.get(key)
        if len(key) <= len(keys.MODEL_STATUS) or not query.has_data or query.is_stale:
            return
        self.signals.apply_availability(key[len(keys.MODEL_STATUS)], bool(query.data))


def current_app() -> Optional[ClientApp]:
    """The started instance, if any."""
    return _current
