"""Short-lived UI signals kept out of the query cache.

Wake-word pulse, audio level, model download progress, the active window
and the overlay mode are push-only values: they decay or get overwritten and
never participate in request/response caching. Timers are owned by the store
and cancelled by `close()`, after which every write is ignored.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Callable, Iterable, Literal, Optional

from ..core.logger import get_logger
from ..services.schemas import ActiveWindow
from .app_state import ModelStatus


SignalName = Literal["wake_word", "audio_level", "model", "active_window", "overlay_mode"]
SignalListener = Callable[[SignalName], None]

logger = get_logger("signals")


class TransientSignalStore:
    """Process-wide store for transient signals."""

    def __init__(
        self,
        *,
        wake_word_decay_ms: int = 500,
        audio_level_interval_ms: int = 50,
        model_types: Iterable[str] = ("tdt", "eou"),
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.wake_word_decay = wake_word_decay_ms / 1000.0
        self.audio_level_interval = audio_level_interval_ms / 1000.0
        self._loop = loop
        self._listeners: list[SignalListener] = []
        self._closed = False

        self._wake_word = False
        self._wake_word_handle: Optional[asyncio.TimerHandle] = None

        self._audio_level = 0.0
        self._pending_level: Optional[float] = None
        self._level_handle: Optional[asyncio.TimerHandle] = None

        self._models: dict[str, ModelStatus] = {name: ModelStatus() for name in model_types}
        self._active_window: Optional[ActiveWindow] = None
        self._overlay_mode: Optional[str] = None

    # ------------------------------------------------------------------ #
    # Subscription
    # ------------------------------------------------------------------ #
    def subscribe(self, listener: SignalListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _release() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _release

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Cancel pending timers and stop accepting writes."""
        self._closed = True
        for handle in (self._wake_word_handle, self._level_handle):
            if handle is not None:
                handle.cancel()
        self._wake_word_handle = None
        self._level_handle = None
        self._pending_level = None
        self._listeners.clear()

    # ------------------------------------------------------------------ #
    # Wake word
    # ------------------------------------------------------------------ #
    @property
    def wake_word_detected(self) -> bool:
        return self._wake_word

    def pulse_wake_word(self) -> None:
        """Set the pulse and (re)arm its decay timer; detections never stack."""
        if self._closed:
            return
        if self._wake_word_handle is not None:
            self._wake_word_handle.cancel()
        self._wake_word_handle = self._get_loop().call_later(self.wake_word_decay, self._clear_wake_word)
        if not self._wake_word:
            self._wake_word = True
            self._notify("wake_word")

    def _clear_wake_word(self) -> None:
        self._wake_word_handle = None
        if self._closed or not self._wake_word:
            return
        self._wake_word = False
        self._notify("wake_word")

    # ------------------------------------------------------------------ #
    # Audio level
    # ------------------------------------------------------------------ #
    @property
    def audio_level(self) -> float:
        return self._audio_level

    def push_audio_level(self, level: float) -> None:
        """Buffer the latest level; it is published at most once per interval."""
        if self._closed:
            return
        self._pending_level = max(0.0, min(100.0, float(level)))
        if self._level_handle is None:
            self._level_handle = self._get_loop().call_later(self.audio_level_interval, self._flush_audio_level)

    def reset_audio_level(self) -> None:
        if self._level_handle is not None:
            self._level_handle.cancel()
            self._level_handle = None
        self._pending_level = None
        if self._closed:
            return
        if self._audio_level != 0.0:
            self._audio_level = 0.0
            self._notify("audio_level")

    def _flush_audio_level(self) -> None:
        self._level_handle = None
        if self._closed or self._pending_level is None:
            return
        level, self._pending_level = self._pending_level, None
        if level != self._audio_level:
            self._audio_level = level
            self._notify("audio_level")

    # ------------------------------------------------------------------ #
    # Models
    # ------------------------------------------------------------------ #
    def is_tracked(self, model_type: str) -> bool:
        return model_type in self._models

    def model_status(self, model_type: str) -> ModelStatus:
        return self._models.get(model_type, ModelStatus())

    @property
    def models(self) -> dict[str, ModelStatus]:
        return dict(self._models)

    def set_model_progress(self, model_type: str, percent: float) -> bool:
        """Record download progress; untracked model types are ignored."""
        if not self.is_tracked(model_type):
            logger.debug("Progression ignoree pour le modele non suivi %s", model_type)
            return False
        current = self._models[model_type]
        if current.download_state == "completed" and current.is_available:
            return False
        return self._update_model(model_type, progress=float(percent), download_state="downloading")

    def mark_download_started(self, model_type: str) -> bool:
        return self._update_model(model_type, download_state="downloading", progress=0.0, error=None)

    def mark_download_failed(self, model_type: str, error: str) -> bool:
        return self._update_model(model_type, download_state="error", error=error)

    def mark_download_completed(self, model_type: str) -> bool:
        return self._update_model(
            model_type,
            is_available=True,
            download_state="completed",
            progress=100.0,
            error=None,
        )

    def apply_availability(self, model_type: str, available: bool) -> bool:
        """Fold a fetched availability flag into the model slice.

        Availability is authoritative unless a download or an explicit error
        is currently displayed: an available model shows as completed, a
        missing one falls back to idle.
        """
        if not self.is_tracked(model_type):
            return False
        current = self._models[model_type]
        changes: dict[str, object] = {"is_available": available}
        if current.download_state not in ("downloading", "error"):
            changes["download_state"] = "completed" if available else "idle"
            changes["progress"] = 100.0 if available else 0.0
        return self._update_model(model_type, **changes)

    def _update_model(self, model_type: str, **changes: object) -> bool:
        if self._closed or not self.is_tracked(model_type):
            return False
        current = self._models[model_type]
        updated = replace(current, **changes)
        if updated == current:
            return False
        self._models[model_type] = updated
        self._notify("model")
        return True

    # ------------------------------------------------------------------ #
    # Active window / overlay
    # ------------------------------------------------------------------ #
    @property
    def active_window(self) -> Optional[ActiveWindow]:
        return self._active_window

    def set_active_window(self, window: Optional[ActiveWindow]) -> None:
        if self._closed:
            return
        self._active_window = window
        self._notify("active_window")

    @property
    def overlay_mode(self) -> Optional[str]:
        return self._overlay_mode

    def set_overlay_mode(self, mode: Optional[str]) -> None:
        if self._closed or mode == self._overlay_mode:
            return
        self._overlay_mode = mode
        self._notify("overlay_mode")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _notify(self, name: SignalName) -> None:
        for listener in list(self._listeners):
            listener(name)
