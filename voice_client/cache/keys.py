"""Query keys of the command/query cache.

Convention: ``("host", "<command_name>", *args)`` for plain host commands and
``("<resource>", ...)`` for resources invalidated as a family by the events.
Invalidation matches on key prefixes.
"""

from __future__ import annotations

from typing import Tuple


QueryKey = Tuple[str, ...]

RECORDINGS: QueryKey = ("host", "list_recordings")
RECORDING_STATE: QueryKey = ("host", "get_recording_state")
LISTENING_STATUS: QueryKey = ("host", "get_listening_status")
AUDIO_DEVICES: QueryKey = ("host", "list_audio_devices")
AUDIO_MONITOR: QueryKey = ("host", "audio_monitor")
COMMANDS: QueryKey = ("host", "list_commands")
MODEL_STATUS: QueryKey = ("host", "check_parakeet_model_status")

DICTIONARY: QueryKey = ("dictionary",)
DICTIONARY_LIST: QueryKey = DICTIONARY + ("list",)

WINDOW_CONTEXT: QueryKey = ("window_context",)
WINDOW_CONTEXT_LIST: QueryKey = WINDOW_CONTEXT + ("list",)
RUNNING_APPS: QueryKey = WINDOW_CONTEXT + ("running_apps",)


def model_status(model_type: str) -> QueryKey:
    return MODEL_STATUS + (model_type,)


def matches(prefix: QueryKey, key: QueryKey) -> bool:
    """True when `key` starts with `prefix`."""
    return key[: len(prefix)] == prefix
