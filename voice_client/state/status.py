"""Derivation of the single UI status from the feature slices."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from .app_state import ListeningState, RecordingState, TranscriptionState


FeatureStatus = Literal["idle", "listening", "recording", "processing"]


@dataclass(slots=True, frozen=True)
class AppStatus:
    """Snapshot combining the derived status and the first visible error."""

    status: FeatureStatus
    error: Optional[str]
    is_recording: bool
    is_transcribing: bool
    is_listening: bool


def derive_status(
    recording: RecordingState,
    transcription: TranscriptionState,
    listening: ListeningState,
) -> FeatureStatus:
    """Priority: recording > processing > listening > idle."""
    if recording.is_recording:
        return "recording"
    if transcription.is_transcribing:
        return "processing"
    if listening.is_listening:
        return "listening"
    return "idle"


def derive_error(
    recording: RecordingState,
    transcription: TranscriptionState,
    listening: ListeningState,
) -> Optional[str]:
    """First non-null error, in the same priority order as the status."""
    for error in (recording.error, transcription.error, listening.error):
        if error is not None:
            return error
    return None


def app_status(
    recording: RecordingState,
    transcription: TranscriptionState,
    listening: ListeningState,
) -> AppStatus:
    return AppStatus(
        status=derive_status(recording, transcription, listening),
        error=derive_error(recording, transcription, listening),
        is_recording=recording.is_recording,
        is_transcribing=transcription.is_transcribing,
        is_listening=listening.is_listening,
    )
