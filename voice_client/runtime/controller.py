"""User actions issued against the host.

Actions never write the state slices: the host events that follow are the
source of truth. A failed action leaves its message in `action_errors`
until the same action is attempted again, then the exception propagates to
the caller.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, TypeVar

from ..cache import keys
from ..cache.resources import Resources
from ..core.config import DeletePolicy
from ..core.errors import InvalidInputError, error_message
from ..core.logger import get_logger
from ..services.api import HostAPI
from ..services.schemas import (
    Command,
    DictionaryEntry,
    EntityKind,
    OverrideMode,
    RecordingMetadata,
    WindowContext,
)
from ..services.validation import (
    duplicate_trigger_error,
    validate_suffix,
    validate_title_pattern,
    validate_trigger,
)
from ..state.signals import TransientSignalStore
from .assignments import AssignmentSynchronizer


T = TypeVar("T")
ErrorListener = Callable[[str], None]

logger = get_logger("client")


class ClientController:
    """High-level entry point for every user action."""

    def __init__(
        self,
        api: HostAPI,
        resources: Resources,
        signals: TransientSignalStore,
        *,
        delete_policy: DeletePolicy = "cascade",
    ) -> None:
        self.api = api
        self.resources = resources
        self.signals = signals
        self.delete_policy = delete_policy
        self.sync = AssignmentSynchronizer(resources.fresh_window_contexts, self._write_context)
        self.action_errors: dict[str, str] = {}
        self._error_listeners: list[ErrorListener] = []

    def subscribe_errors(self, listener: ErrorListener) -> Callable[[], None]:
        """Called with the action name whenever its error changes."""
        self._error_listeners.append(listener)

        def _release() -> None:
            if listener in self._error_listeners:
                self._error_listeners.remove(listener)

        return _release

    def error_for(self, action: str) -> Optional[str]:
        return self.action_errors.get(action)

    # ------------------------------------------------------------------ #
    # Recording / listening
    # ------------------------------------------------------------------ #
    async def start_recording(self, device_name: Optional[str] = None) -> None:
        await self._run(
            "start_recording",
            lambda: self.resources.mutate(keys.RECORDING_STATE, lambda: self.api.start_recording(device_name)),
        )

    async def stop_recording(self) -> Optional[RecordingMetadata]:
        """Returns the host's metadata, if any; the slice waits for `recording_stopped`."""
        return await self._run(
            "stop_recording",
            lambda: self.resources.mutate(keys.RECORDING_STATE, self.api.stop_recording),
        )

    async def enable_listening(self, device_name: Optional[str] = None) -> None:
        await self._run(
            "enable_listening",
            lambda: self.resources.mutate(keys.LISTENING_STATUS, lambda: self.api.enable_listening(device_name)),
        )

    async def disable_listening(self) -> None:
        await self._run(
            "disable_listening",
            lambda: self.resources.mutate(keys.LISTENING_STATUS, self.api.disable_listening),
        )

    # ------------------------------------------------------------------ #
    # Models / audio
    # ------------------------------------------------------------------ #
    async def download_model(self, model_type: str) -> None:
        action = f"download_model:{model_type}"
        self.signals.mark_download_started(model_type)
        try:
            await self._run(
                action,
                lambda: self.resources.mutate(
                    keys.model_status(model_type),
                    lambda: self.api.download_model(model_type),
                ),
            )
        except Exception:
            self.signals.mark_download_failed(model_type, self.action_errors[action])
            raise

    async def refresh_models(self) -> None:
        await self.resources.refresh(keys.MODEL_STATUS)

    async def refresh_audio_devices(self) -> None:
        await self.resources.refresh(keys.AUDIO_DEVICES)

    async def start_audio_monitor(self, device_name: Optional[str] = None) -> None:
        await self._run(
            "start_audio_monitor",
            lambda: self.resources.mutate(keys.AUDIO_MONITOR, lambda: self.api.start_audio_monitor(device_name)),
        )

    async def stop_audio_monitor(self) -> None:
        """The meter drops to zero even when the host refuses to stop."""
        try:
            await self._run(
                "stop_audio_monitor",
                lambda: self.resources.mutate(keys.AUDIO_MONITOR, self.api.stop_audio_monitor),
            )
        finally:
            self.signals.reset_audio_level()

    # ------------------------------------------------------------------ #
    # Dictionary
    # ------------------------------------------------------------------ #
    async def add_dictionary_entry(
        self,
        trigger: str,
        expansion: str,
        *,
        suffix: Optional[str] = None,
        auto_enter: bool = False,
        disable_suffix: bool = False,
        complete_match_only: bool = False,
        context_ids: Sequence[str] = (),
    ) -> DictionaryEntry:
        async def _add() -> DictionaryEntry:
            existing = await self.resources.dictionary_entries()
            self._check_entity_fields(trigger, [e.trigger for e in existing], suffix=suffix)
            entry = await self.resources.mutate(
                keys.DICTIONARY,
                lambda: self.api.add_dictionary_entry(
                    trigger.strip(),
                    expansion,
                    suffix=suffix or None,
                    auto_enter=auto_enter,
                    disable_suffix=disable_suffix,
                    complete_match_only=complete_match_only,
                ),
            )
            if context_ids:
                await self.sync.sync(entry.id, context_ids, "dictionary")
            return entry

        return await self._run("add_dictionary_entry", _add)

    async def update_dictionary_entry(
        self,
        entry: DictionaryEntry,
        *,
        context_ids: Optional[Iterable[str]] = None,
    ) -> None:
        """`context_ids=None` leaves the entry's context assignments untouched."""

        async def _update() -> None:
            existing = await self.resources.dictionary_entries()
            others = [e.trigger for e in existing if e.id != entry.id]
            self._check_entity_fields(entry.trigger, others, suffix=entry.suffix)
            await self.resources.mutate(keys.DICTIONARY, lambda: self.api.update_dictionary_entry(entry))
            if context_ids is not None:
                await self.sync.sync(entry.id, context_ids, "dictionary")

        await self._run("update_dictionary_entry", _update)

    async def delete_dictionary_entry(self, entry_id: str) -> None:
        await self._run(
            "delete_dictionary_entry",
            lambda: self._delete("dictionary", entry_id, self.api.delete_dictionary_entry),
        )

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #
    async def add_command(
        self,
        trigger: str,
        action_type: str,
        parameters: Optional[dict[str, str]] = None,
        *,
        enabled: bool = True,
        context_ids: Sequence[str] = (),
    ) -> Command:
        async def _add() -> Command:
            existing = await self.resources.commands()
            self._check_entity_fields(trigger, [c.trigger for c in existing])
            command = await self.resources.mutate(
                keys.COMMANDS,
                lambda: self.api.add_command(trigger.strip(), action_type, parameters, enabled=enabled),
            )
            if context_ids:
                await self.sync.sync(command.id, context_ids, "command")
            return command

        return await self._run("add_command", _add)

    async def update_command(
        self,
        command: Command,
        *,
        context_ids: Optional[Iterable[str]] = None,
    ) -> None:
        async def _update() -> None:
            existing = await self.resources.commands()
            self._check_entity_fields(command.trigger, [c.trigger for c in existing if c.id != command.id])
            await self.resources.mutate(keys.COMMANDS, lambda: self.api.update_command(command))
            if context_ids is not None:
                await self.sync.sync(command.id, context_ids, "command")

        await self._run("update_command", _update)

    async def delete_command(self, command_id: str) -> None:
        await self._run(
            "delete_command",
            lambda: self._delete("command", command_id, self.api.remove_command),
        )

    # ------------------------------------------------------------------ #
    # Window contexts
    # ------------------------------------------------------------------ #
    async def add_window_context(
        self,
        name: str,
        app_name: str,
        *,
        title_pattern: Optional[str] = None,
        bundle_id: Optional[str] = None,
        command_mode: OverrideMode = "merge",
        dictionary_mode: OverrideMode = "merge",
        enabled: bool = True,
        priority: int = 0,
    ) -> WindowContext:
        async def _add() -> WindowContext:
            self._check_context_fields(name, app_name, title_pattern)
            return await self.resources.mutate(
                keys.WINDOW_CONTEXT_LIST,
                lambda: self.api.add_window_context(
                    name.strip(),
                    app_name.strip(),
                    title_pattern=title_pattern or None,
                    bundle_id=bundle_id or None,
                    command_mode=command_mode,
                    dictionary_mode=dictionary_mode,
                    enabled=enabled,
                    priority=priority,
                ),
            )

        return await self._run("add_window_context", _add)

    async def update_window_context(self, context: WindowContext) -> None:
        """Edit the context's own fields; id arrays are kept as the host currently has them."""

        async def _update() -> None:
            self._check_context_fields(context.name, context.matcher.app_name, context.matcher.title_pattern)
            current = {ctx.id: ctx for ctx in await self.resources.fresh_window_contexts()}.get(context.id)
            updated = context
            if current is not None:
                updated = context.model_copy(
                    update={
                        "command_ids": list(current.command_ids),
                        "dictionary_entry_ids": list(current.dictionary_entry_ids),
                    }
                )
            await self._write_context(updated)

        await self._run("update_window_context", _update)

    async def delete_window_context(self, context_id: str) -> None:
        await self._run(
            "delete_window_context",
            lambda: self.resources.mutate(
                keys.WINDOW_CONTEXT_LIST,
                lambda: self.api.delete_window_context(context_id),
            ),
        )

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _run(self, action: str, call: Callable[[], Awaitable[T]]) -> T:
        self._set_error(action, None)
        try:
            return await call()
        except Exception as exc:
            message = error_message(exc)
            logger.warning("Action %s en echec: %s", action, message)
            self._set_error(action, message)
            raise

    def _set_error(self, action: str, message: Optional[str]) -> None:
        if message is None:
            if self.action_errors.pop(action, None) is None:
                return
        else:
            self.action_errors[action] = message
        for listener in list(self._error_listeners):
            listener(action)

    async def _write_context(self, context: WindowContext) -> None:
        await self.resources.mutate(keys.WINDOW_CONTEXT_LIST, lambda: self.api.update_window_context(context))

    async def _delete(
        self,
        kind: EntityKind,
        entity_id: str,
        delete: Callable[[str], Awaitable[Any]],
    ) -> None:
        if self.delete_policy == "cascade":
            await self.sync.release_entity(entity_id, kind)
        elif self.delete_policy == "reject":
            await self.sync.check_unreferenced(entity_id, kind)
        prefix = keys.DICTIONARY if kind == "dictionary" else keys.COMMANDS
        await self.resources.mutate(prefix, lambda: delete(entity_id))
        logger.info("Suppression %s %s (politique %s)", kind, entity_id, self.delete_policy)

    @staticmethod
    def _check_entity_fields(
        trigger: str,
        existing_triggers: Iterable[str],
        *,
        suffix: Optional[str] = None,
    ) -> None:
        error = validate_trigger(trigger) or duplicate_trigger_error(trigger, existing_triggers)
        if error:
            raise InvalidInputError("trigger", error)
        error = validate_suffix(suffix)
        if error:
            raise InvalidInputError("suffix", error)

    @staticmethod
    def _check_context_fields(name: str, app_name: str, title_pattern: Optional[str]) -> None:
        if not name.strip():
            raise InvalidInputError("name", "Name is required")
        if not app_name.strip():
            raise InvalidInputError("app_name", "App name is required")
        error = validate_title_pattern(title_pattern)
        if error:
            raise InvalidInputError("title_pattern", error)
