"""Typed wrappers around the host commands."""

from __future__ import annotations

from typing import Any, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from ..core.errors import HostCallError
from .host import Host
from .schemas import (
    AudioInputDevice,
    Command,
    DictionaryEntry,
    ListeningStatus,
    OverrideMode,
    Recording,
    RecordingMetadata,
    RecordingStateResponse,
    RunningApplication,
    WindowContext,
)


T = TypeVar("T")

# Names the host expects for `check_parakeet_model_status`.
HOST_MODEL_NAMES = {"tdt": "ParakeetTDT", "eou": "ParakeetEOU"}


class HostAPI:
    """Async client for the host commands used by the engine."""

    def __init__(self, host: Host) -> None:
        self.host = host

    # ------------------------------------------------------------------ #
    # Recording / listening
    # ------------------------------------------------------------------ #
    async def start_recording(self, device_name: Optional[str] = None) -> None:
        await self._call("start_recording", deviceName=device_name)

    async def stop_recording(self) -> Optional[RecordingMetadata]:
        raw = await self._call("stop_recording")
        if raw is None:
            return None
        return self._parse("stop_recording", RecordingMetadata, raw)

    async def get_recording_state(self) -> RecordingStateResponse:
        raw = await self._call("get_recording_state")
        return self._parse("get_recording_state", RecordingStateResponse, raw or {})

    async def enable_listening(self, device_name: Optional[str] = None) -> None:
        await self._call("enable_listening", deviceName=device_name)

    async def disable_listening(self) -> None:
        await self._call("disable_listening")

    async def get_listening_status(self) -> ListeningStatus:
        raw = await self._call("get_listening_status")
        return self._parse("get_listening_status", ListeningStatus, raw or {})

    async def list_recordings(self) -> list[Recording]:
        raw = await self._call("list_recordings")
        return self._parse("list_recordings", list[Recording], raw or [])

    # ------------------------------------------------------------------ #
    # Dictionary
    # ------------------------------------------------------------------ #
    async def list_dictionary_entries(self) -> list[DictionaryEntry]:
        raw = await self._call("list_dictionary_entries")
        return self._parse("list_dictionary_entries", list[DictionaryEntry], raw or [])

    async def add_dictionary_entry(
        self,
        trigger: str,
        expansion: str,
        *,
        suffix: Optional[str] = None,
        auto_enter: Optional[bool] = None,
        disable_suffix: Optional[bool] = None,
        complete_match_only: Optional[bool] = None,
    ) -> DictionaryEntry:
        raw = await self._call(
            "add_dictionary_entry",
            trigger=trigger,
            expansion=expansion,
            suffix=suffix,
            autoEnter=auto_enter,
            disableSuffix=disable_suffix,
            completeMatchOnly=complete_match_only,
        )
        return self._parse("add_dictionary_entry", DictionaryEntry, raw)

    async def update_dictionary_entry(self, entry: DictionaryEntry) -> None:
        await self._call("update_dictionary_entry", **entry.to_payload())

    async def delete_dictionary_entry(self, entry_id: str) -> None:
        await self._call("delete_dictionary_entry", id=entry_id)

    # ------------------------------------------------------------------ #
    # Window contexts
    # ------------------------------------------------------------------ #
    async def list_window_contexts(self) -> list[WindowContext]:
        raw = await self._call("list_window_contexts")
        return self._parse("list_window_contexts", list[WindowContext], raw or [])

    async def add_window_context(
        self,
        name: str,
        app_name: str,
        *,
        title_pattern: Optional[str] = None,
        bundle_id: Optional[str] = None,
        command_mode: OverrideMode = "merge",
        dictionary_mode: OverrideMode = "merge",
        command_ids: Optional[list[str]] = None,
        dictionary_entry_ids: Optional[list[str]] = None,
        enabled: bool = True,
        priority: int = 0,
    ) -> WindowContext:
        raw = await self._call(
            "add_window_context",
            name=name,
            appName=app_name,
            titlePattern=title_pattern,
            bundleId=bundle_id,
            commandMode=command_mode,
            dictionaryMode=dictionary_mode,
            commandIds=list(command_ids or []),
            dictionaryEntryIds=list(dictionary_entry_ids or []),
            enabled=enabled,
            priority=priority,
        )
        return self._parse("add_window_context", WindowContext, raw)

    async def update_window_context(self, context: WindowContext) -> None:
        await self._call("update_window_context", **context.to_update_args())

    async def delete_window_context(self, context_id: str) -> None:
        await self._call("delete_window_context", id=context_id)

    async def list_running_applications(self) -> list[RunningApplication]:
        raw = await self._call("list_running_applications")
        return self._parse("list_running_applications", list[RunningApplication], raw or [])

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #
    async def list_commands(self) -> list[Command]:
        raw = await self._call("list_commands")
        return self._parse("list_commands", list[Command], raw or [])

    async def add_command(
        self,
        trigger: str,
        action_type: str,
        parameters: Optional[dict[str, str]] = None,
        *,
        enabled: bool = True,
    ) -> Command:
        raw = await self._call(
            "add_command",
            input={
                "trigger": trigger,
                "action_type": action_type,
                "parameters": dict(parameters or {}),
                "enabled": enabled,
            },
        )
        return self._parse("add_command", Command, raw)

    async def update_command(self, command: Command) -> None:
        await self._call(
            "update_command",
            input={
                "id": command.id,
                "trigger": command.trigger,
                "action_type": command.action_type,
                "parameters": dict(command.parameters),
                "enabled": command.enabled,
            },
        )

    async def remove_command(self, command_id: str) -> None:
        await self._call("remove_command", id=command_id)

    # ------------------------------------------------------------------ #
    # Models / audio
    # ------------------------------------------------------------------ #
    async def check_model_status(self, model_type: str) -> bool:
        raw = await self._call(
            "check_parakeet_model_status",
            modelType=HOST_MODEL_NAMES.get(model_type, model_type),
        )
        return bool(raw)

    async def download_model(self, model_type: str) -> None:
        await self._call("download_model", modelType=model_type)

    async def list_audio_devices(self) -> list[AudioInputDevice]:
        raw = await self._call("list_audio_devices")
        return self._parse("list_audio_devices", list[AudioInputDevice], raw or [])

    async def start_audio_monitor(self, device_name: Optional[str] = None) -> None:
        await self._call("start_audio_monitor", deviceName=device_name)

    async def stop_audio_monitor(self) -> None:
        await self._call("stop_audio_monitor")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _call(self, command: str, **args: Any) -> Any:
        payload = {key: value for key, value in args.items() if value is not None}
        return await self.host.invoke(command, payload or None)

    @staticmethod
    def _parse(command: str, target: Any, raw: Any) -> Any:
        try:
            return TypeAdapter(target).validate_python(raw)
        except ValidationError as exc:
            raise HostCallError(command, f"Unexpected response from {command}: {exc.error_count()} error(s)") from exc
