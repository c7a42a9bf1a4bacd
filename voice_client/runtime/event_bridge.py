"""Routes host push events to the state slices, the signal store and the cache.

Event kinds and their destinations:

- recording / listening / transcription events -> `AppState` slices
- wake word, audio level, download progress, active window, overlay mode
  -> `TransientSignalStore`
- ``*_updated`` notifications -> query invalidation (lists are always
  refetched wholesale, never patched)

Every payload goes through `decode_event` first. A payload that does not
validate is logged and dropped; an exception raised by a handler is logged
and stopped at the handler boundary. Handlers are synchronous, so events
sharing a name are applied in arrival order.

Query values (initial listening status, recording state) only seed a slice
until the first event for that slice has been applied; from then on the
events are authoritative.
"""

from __future__ import annotations

from typing import Any, Callable

from ..cache import keys
from ..cache.queries import QueryCache
from ..core.errors import PayloadError
from ..core.logger import get_logger
from ..core.trace import event_trace
from ..services.host import Host, Unlisten
from ..services.schemas import (
    ActiveWindowChanged,
    AudioLevel,
    KeyBlockingUnavailable,
    ListeningStarted,
    ListeningStatus,
    ListeningStopped,
    ListeningUnavailable,
    ModelDownloadCompleted,
    ModelFileDownloadProgress,
    OverlayMode,
    RecordingCancelled,
    RecordingError,
    RecordingStarted,
    RecordingStateResponse,
    RecordingStopped,
    ResourceUpdated,
    TranscriptionCompleted,
    TranscriptionError,
    TranscriptionStarted,
    WakeWordDetected,
    decode_event,
    event_names,
)
from ..state.app_state import AppState, SliceName
from ..state.signals import TransientSignalStore


logger = get_logger("event_bridge")

# Query families refreshed by each resource notification.
RESOURCE_KEYS: dict[str, keys.QueryKey] = {
    "dictionary_updated": keys.DICTIONARY,
    "window_contexts_updated": keys.WINDOW_CONTEXT,
    "voice_commands_updated": keys.COMMANDS,
    "recordings_updated": keys.RECORDINGS,
    "transcriptions_updated": keys.RECORDINGS,
}


class EventBridge:
    """Single long-lived subscriber for every named host event."""

    def __init__(
        self,
        host: Host,
        state: AppState,
        signals: TransientSignalStore,
        cache: QueryCache,
    ) -> None:
        self.host = host
        self.state = state
        self.signals = signals
        self.cache = cache
        self._unlisten: list[Unlisten] = []
        self._cache_release: list[Callable[[], None]] = []
        self._seen: set[SliceName] = set()
        self._started = False
        self._stopped = False
        self._handlers: dict[type, Callable[[Any], None]] = {
            RecordingStarted: self._on_recording_started,
            RecordingStopped: self._on_recording_stopped,
            RecordingCancelled: self._on_recording_cancelled,
            RecordingError: self._on_recording_error,
            ListeningStarted: self._on_listening_started,
            ListeningStopped: self._on_listening_stopped,
            ListeningUnavailable: self._on_listening_unavailable,
            WakeWordDetected: self._on_wake_word,
            TranscriptionStarted: self._on_transcription_started,
            TranscriptionCompleted: self._on_transcription_completed,
            TranscriptionError: self._on_transcription_error,
            ModelFileDownloadProgress: self._on_download_progress,
            ModelDownloadCompleted: self._on_download_completed,
            AudioLevel: self._on_audio_level,
            ActiveWindowChanged: self._on_active_window,
            ResourceUpdated: self._on_resource_updated,
            KeyBlockingUnavailable: self._on_key_blocking_unavailable,
            OverlayMode: self._on_overlay_mode,
        }

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    @property
    def is_active(self) -> bool:
        return self._started and not self._stopped

    async def start(self) -> None:
        """Subscribe to every event name.

        If `stop()` runs while a subscription is still being acquired, the
        late subscription is released as soon as it resolves. A failed
        subscription releases the ones already acquired before propagating.
        """
        if self._started:
            return
        self._started = True
        self._cache_release.append(self.cache.subscribe(keys.LISTENING_STATUS, self._seed_from_query))
        self._cache_release.append(self.cache.subscribe(keys.RECORDING_STATE, self._seed_from_query))
        try:
            for name in event_names():
                unlisten = await self.host.listen(name, self.handle)
                if self._stopped:
                    unlisten()
                    return
                self._unlisten.append(unlisten)
        except BaseException:
            logger.warning("Abonnement aux evenements interrompu, liberation de %d abonnement(s)", len(self._unlisten))
            self.stop()
            raise
        logger.info("Pont d'evenements actif (%d abonnements)", len(self._unlisten))

    def stop(self) -> None:
        """Release every subscription; safe to call more than once."""
        self._stopped = True
        while self._unlisten:
            unlisten = self._unlisten.pop()
            try:
                unlisten()
            except Exception:
                logger.exception("Desabonnement en echec")
        while self._cache_release:
            self._cache_release.pop()()

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #
    def handle(self, name: str, payload: Any) -> bool:
        """Decode and apply one event. Returns False when it was dropped."""
        if self._stopped:
            return False
        with event_trace(name):
            try:
                event = decode_event(name, payload)
            except PayloadError as exc:
                logger.warning("Evenement invalide ignore: %s", exc)
                return False
            handler = self._handlers.get(type(event))
            if handler is None:
                logger.warning("Aucun gestionnaire pour %s", name)
                return False
            try:
                handler(event)
            except Exception:
                logger.exception("Gestionnaire en echec pour %s", name)
                return False
            return True

    # ------------------------------------------------------------------ #
    # Recording
    # ------------------------------------------------------------------ #
    def _on_recording_started(self, event: RecordingStarted) -> None:
        self._seen.add("recording")
        self.state.update_recording(
            is_recording=True,
            is_processing=False,
            was_cancelled=False,
            cancel_reason=None,
            error=None,
        )
        self.cache.invalidate(keys.RECORDING_STATE)

    def _on_recording_stopped(self, event: RecordingStopped) -> None:
        self._seen.add("recording")
        self.state.update_recording(
            is_recording=False,
            last_recording=event.payload.metadata,
            error=None,
        )
        self.cache.invalidate(keys.RECORDING_STATE)

    def _on_recording_cancelled(self, event: RecordingCancelled) -> None:
        self._seen.add("recording")
        self.state.update_recording(
            is_recording=False,
            was_cancelled=True,
            cancel_reason=event.payload.reason,
        )
        self.cache.invalidate(keys.RECORDING_STATE)

    def _on_recording_error(self, event: RecordingError) -> None:
        self._seen.add("recording")
        self.state.update_recording(error=event.payload.message)
        self.cache.invalidate(keys.RECORDING_STATE)

    # ------------------------------------------------------------------ #
    # Listening
    # ------------------------------------------------------------------ #
    def _on_listening_started(self, event: ListeningStarted) -> None:
        self._seen.add("listening")
        self.state.update_listening(is_listening=True, is_mic_available=True, error=None)
        self.cache.invalidate(keys.LISTENING_STATUS)

    def _on_listening_stopped(self, event: ListeningStopped) -> None:
        self._seen.add("listening")
        self.state.update_listening(is_listening=False, error=None)
        self.cache.invalidate(keys.LISTENING_STATUS)

    def _on_listening_unavailable(self, event: ListeningUnavailable) -> None:
        self._seen.add("listening")
        self.state.update_listening(
            is_listening=False,
            is_mic_available=False,
            error=event.payload.reason,
        )
        self.cache.invalidate(keys.LISTENING_STATUS)

    def _on_wake_word(self, event: WakeWordDetected) -> None:
        self.signals.pulse_wake_word()

    # ------------------------------------------------------------------ #
    # Transcription
    # ------------------------------------------------------------------ #
    def _on_transcription_started(self, event: TranscriptionStarted) -> None:
        self.state.update_transcription(
            is_transcribing=True,
            transcribed_text=None,
            duration_ms=None,
            error=None,
        )

    def _on_transcription_completed(self, event: TranscriptionCompleted) -> None:
        self.state.update_transcription(
            is_transcribing=False,
            transcribed_text=event.payload.text,
            duration_ms=event.payload.duration_ms,
            error=None,
        )
        self.cache.invalidate(keys.RECORDINGS)

    def _on_transcription_error(self, event: TranscriptionError) -> None:
        self.state.update_transcription(is_transcribing=False, error=event.payload.error)

    # ------------------------------------------------------------------ #
    # Models / audio / window
    # ------------------------------------------------------------------ #
    def _on_download_progress(self, event: ModelFileDownloadProgress) -> None:
        self.signals.set_model_progress(event.payload.model_type, event.payload.percent)

    def _on_download_completed(self, event: ModelDownloadCompleted) -> None:
        model_type = event.payload.model_type
        if not self.signals.mark_download_completed(model_type) and not self.signals.is_tracked(model_type):
            logger.info("Telechargement termine pour un modele non suivi: %s", model_type)
        self.cache.invalidate(keys.model_status(model_type))

    def _on_audio_level(self, event: AudioLevel) -> None:
        self.signals.push_audio_level(event.payload)

    def _on_active_window(self, event: ActiveWindowChanged) -> None:
        self.signals.set_active_window(event.payload)

    def _on_overlay_mode(self, event: OverlayMode) -> None:
        self.signals.set_overlay_mode(event.payload)

    # ------------------------------------------------------------------ #
    # Resources
    # ------------------------------------------------------------------ #
    def _on_resource_updated(self, event: ResourceUpdated) -> None:
        self.cache.invalidate(RESOURCE_KEYS[event.event])

    def _on_key_blocking_unavailable(self, event: KeyBlockingUnavailable) -> None:
        logger.warning(
            "Blocage des touches indisponible: %s (Echap peut atteindre d'autres applications)",
            event.payload.reason,
        )

    # ------------------------------------------------------------------ #
    # Query seeding
    # ------------------------------------------------------------------ #
    def _seed_from_query(self, key: keys.QueryKey) -> None:
        query = self.cache.get(key)
        if not query.has_data or query.is_stale:
            return
        data = query.data
        if isinstance(data, ListeningStatus) and "listening" not in self._seen:
            self._update_if_changed(
                "listening",
                is_listening=data.enabled,
                is_mic_available=data.mic_available,
            )
        elif isinstance(data, RecordingStateResponse) and "recording" not in self._seen:
            self._update_if_changed(
                "recording",
                is_recording=data.state == "Recording",
                is_processing=data.state == "Processing",
            )

    def _update_if_changed(self, name: SliceName, **changes: Any) -> None:
        current = getattr(self.state, name)
        if all(getattr(current, field) == value for field, value in changes.items()):
            return
        getattr(self.state, f"update_{name}")(**changes)
