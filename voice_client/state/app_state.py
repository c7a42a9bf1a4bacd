"""Per-feature state slices written by the event bridge."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Literal, Optional

from ..services.schemas import RecordingMetadata


DownloadState = Literal["idle", "downloading", "completed", "error"]
SliceName = Literal["recording", "listening", "transcription"]


@dataclass(slots=True, frozen=True)
class RecordingState:
    """Recording slice."""

    is_recording: bool = False
    is_processing: bool = False
    last_recording: Optional[RecordingMetadata] = None
    was_cancelled: bool = False
    cancel_reason: Optional[str] = None
    error: Optional[str] = None


@dataclass(slots=True, frozen=True)
class ListeningState:
    """Listening slice. The wake-word pulse lives in the signal store."""

    is_listening: bool = False
    is_mic_available: bool = True
    is_wake_word_detected: bool = False
    error: Optional[str] = None


@dataclass(slots=True, frozen=True)
class TranscriptionState:
    """Transcription slice."""

    is_transcribing: bool = False
    transcribed_text: Optional[str] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None


@dataclass(slots=True, frozen=True)
class ModelStatus:
    """Status of one downloadable model."""

    is_available: bool = False
    download_state: DownloadState = "idle"
    progress: float = 0.0
    error: Optional[str] = None


Listener = Callable[[SliceName], None]


@dataclass(slots=True)
class AppState:
    """Process-wide holder of the feature slices.

    Slices are immutable snapshots; writers swap them through `update_*` so
    readers never observe a half-applied event.
    """

    recording: RecordingState = field(default_factory=RecordingState)
    listening: ListeningState = field(default_factory=ListeningState)
    transcription: TranscriptionState = field(default_factory=TranscriptionState)
    _listeners: list[Listener] = field(default_factory=list, repr=False)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns its release function."""
        self._listeners.append(listener)

        def _release() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _release

    def update_recording(self, **changes: object) -> RecordingState:
        self.recording = replace(self.recording, **changes)
        self._notify("recording")
        return self.recording

    def update_listening(self, **changes: object) -> ListeningState:
        self.listening = replace(self.listening, **changes)
        self._notify("listening")
        return self.listening

    def update_transcription(self, **changes: object) -> TranscriptionState:
        self.transcription = replace(self.transcription, **changes)
        self._notify("transcription")
        return self.transcription

    def _notify(self, name: SliceName) -> None:
        for listener in list(self._listeners):
            listener(name)
