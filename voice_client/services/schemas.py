"""Data schemas exchanged with the native host."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from ..core.errors import PayloadError


OverrideMode = Literal["merge", "replace"]
EntityKind = Literal["command", "dictionary"]
HostRecordingState = Literal["Idle", "Recording", "Processing", "Listening"]


class HostModel(BaseModel):
    """Base for host records: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_payload(self) -> dict[str, Any]:
        """Serialize for a host call (camelCase, unset optionals dropped)."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------- #
# Records
# ---------------------------------------------------------------------- #
class RecordingMetadata(HostModel):
    """Metadata attached to a finished recording."""

    duration_secs: float
    file_path: str
    sample_count: int = 0


class Recording(HostModel):
    """Row of the recordings list."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    file_path: str
    duration_secs: float = 0.0
    created_at: Optional[str] = None
    transcription: Optional[str] = None


class WindowMatcher(HostModel):
    app_name: str
    title_pattern: Optional[str] = None
    bundle_id: Optional[str] = None


class WindowContext(HostModel):
    """Window context owned by the host; the client only holds a read cache."""

    id: str
    name: str
    matcher: WindowMatcher
    command_mode: OverrideMode = "merge"
    dictionary_mode: OverrideMode = "merge"
    command_ids: list[str] = Field(default_factory=list)
    dictionary_entry_ids: list[str] = Field(default_factory=list)
    enabled: bool = True
    priority: int = 0

    def entity_ids(self, kind: EntityKind) -> list[str]:
        return self.command_ids if kind == "command" else self.dictionary_entry_ids

    def mode(self, kind: EntityKind) -> OverrideMode:
        return self.command_mode if kind == "command" else self.dictionary_mode

    def with_entity_ids(self, kind: EntityKind, ids: list[str]) -> "WindowContext":
        """Return a copy with one id array replaced and every other field kept."""
        field_name = "command_ids" if kind == "command" else "dictionary_entry_ids"
        return self.model_copy(update={field_name: list(ids)})

    def to_update_args(self) -> dict[str, Any]:
        """Flattened arguments expected by `update_window_context`."""
        args: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "appName": self.matcher.app_name,
            "titlePattern": self.matcher.title_pattern,
            "bundleId": self.matcher.bundle_id,
            "commandMode": self.command_mode,
            "dictionaryMode": self.dictionary_mode,
            "commandIds": list(self.command_ids),
            "dictionaryEntryIds": list(self.dictionary_entry_ids),
            "enabled": self.enabled,
            "priority": self.priority,
        }
        return {key: value for key, value in args.items() if value is not None}


class Command(HostModel):
    """Voice command."""

    id: str
    trigger: str
    action_type: str = "custom"
    parameters: dict[str, str] = Field(default_factory=dict)
    enabled: bool = True


class DictionaryEntry(HostModel):
    """Text expansion entry."""

    id: str
    trigger: str
    expansion: str = ""
    suffix: Optional[str] = None
    auto_enter: bool = False
    disable_suffix: bool = False
    complete_match_only: bool = False

    @property
    def effective_suffix(self) -> Optional[str]:
        """`disable_suffix` always wins over a non-empty `suffix`."""
        if self.disable_suffix:
            return None
        return self.suffix or None


class AudioInputDevice(HostModel):
    name: str
    is_default: bool = False


class RunningApplication(HostModel):
    name: str
    bundle_id: Optional[str] = None
    is_active: bool = False


class ActiveWindow(HostModel):
    app_name: str
    bundle_id: Optional[str] = None
    window_title: Optional[str] = None
    matched_context_id: Optional[str] = None
    matched_context_name: Optional[str] = None


class ListeningStatus(HostModel):
    """Response of `get_listening_status`."""

    enabled: bool = False
    active: bool = False
    mic_available: bool = True


class RecordingStateResponse(HostModel):
    """Response of `get_recording_state`."""

    state: HostRecordingState = "Idle"


# ---------------------------------------------------------------------- #
# Event payloads
# ---------------------------------------------------------------------- #
class TimestampPayload(HostModel):
    timestamp: Optional[str] = None


class RecordingStoppedPayload(HostModel):
    metadata: RecordingMetadata


class RecordingCancelledPayload(HostModel):
    reason: str = "cancelled"
    timestamp: Optional[str] = None


class RecordingErrorPayload(HostModel):
    message: str


class ReasonPayload(HostModel):
    reason: str
    timestamp: Optional[str] = None


class WakeWordPayload(HostModel):
    confidence: Optional[float] = None
    transcription: Optional[str] = None
    timestamp: Optional[str] = None


class TranscriptionCompletedPayload(HostModel):
    text: str
    duration_ms: int


class TranscriptionErrorPayload(HostModel):
    error: str


class ModelDownloadCompletedPayload(HostModel):
    model_type: str
    model_path: Optional[str] = None


class ModelFileDownloadProgressPayload(HostModel):
    model_type: str
    percent: float = Field(ge=0, le=100)
    file_name: Optional[str] = None
    bytes_downloaded: Optional[int] = None
    total_bytes: Optional[int] = None


class _Event(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RecordingStarted(_Event):
    event: Literal["recording_started"]
    payload: Optional[TimestampPayload] = None


class RecordingStopped(_Event):
    event: Literal["recording_stopped"]
    payload: RecordingStoppedPayload


class RecordingCancelled(_Event):
    event: Literal["recording_cancelled"]
    payload: RecordingCancelledPayload


class RecordingError(_Event):
    event: Literal["recording_error"]
    payload: RecordingErrorPayload


class ListeningStarted(_Event):
    event: Literal["listening_started"]
    payload: Optional[TimestampPayload] = None


class ListeningStopped(_Event):
    event: Literal["listening_stopped"]
    payload: Optional[TimestampPayload] = None


class ListeningUnavailable(_Event):
    event: Literal["listening_unavailable"]
    payload: ReasonPayload


class WakeWordDetected(_Event):
    event: Literal["wake_word_detected"]
    payload: Optional[WakeWordPayload] = None


class TranscriptionStarted(_Event):
    event: Literal["transcription_started"]
    payload: Optional[TimestampPayload] = None


class TranscriptionCompleted(_Event):
    event: Literal["transcription_completed"]
    payload: TranscriptionCompletedPayload


class TranscriptionError(_Event):
    event: Literal["transcription_error"]
    payload: TranscriptionErrorPayload


class ModelDownloadCompleted(_Event):
    event: Literal["model_download_completed"]
    payload: ModelDownloadCompletedPayload


class ModelFileDownloadProgress(_Event):
    event: Literal["model_file_download_progress"]
    payload: ModelFileDownloadProgressPayload


class AudioLevel(_Event):
    event: Literal["audio-level"]
    payload: float


class ActiveWindowChanged(_Event):
    event: Literal["active_window_changed"]
    payload: ActiveWindow


class ResourceUpdated(_Event):
    event: Literal[
        "dictionary_updated",
        "window_contexts_updated",
        "voice_commands_updated",
        "recordings_updated",
        "transcriptions_updated",
    ]
    payload: Any = None


class KeyBlockingUnavailable(_Event):
    event: Literal["key_blocking_unavailable"]
    payload: ReasonPayload


class OverlayMode(_Event):
    event: Literal["overlay_mode"]
    payload: Optional[str] = None


_EVENT_MODELS = (
    RecordingStarted,
    RecordingStopped,
    RecordingCancelled,
    RecordingError,
    ListeningStarted,
    ListeningStopped,
    ListeningUnavailable,
    WakeWordDetected,
    TranscriptionStarted,
    TranscriptionCompleted,
    TranscriptionError,
    ModelDownloadCompleted,
    ModelFileDownloadProgress,
    AudioLevel,
    ActiveWindowChanged,
    ResourceUpdated,
    KeyBlockingUnavailable,
    OverlayMode,
)

HostEvent = Annotated[Union[_EVENT_MODELS], Field(discriminator="event")]

_EVENT_ADAPTER: TypeAdapter[HostEvent] = TypeAdapter(HostEvent)


def decode_event(name: str, payload: Any) -> HostEvent:
    """Validate a raw host notification into its tagged model.

    Raises `PayloadError` when the name is unknown or the payload is malformed.
    """
    try:
        return _EVENT_ADAPTER.validate_python({"event": name, "payload": payload})
    except ValidationError as exc:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise PayloadError(name, f"{location or 'payload'}: {first.get('msg', 'invalid')}") from exc


def event_names() -> list[str]:
    """All event names the bridge subscribes to."""
    names: list[str] = []
    for model in _EVENT_MODELS:
        names.extend(get_args(model.model_fields["event"].annotation))
    return names
