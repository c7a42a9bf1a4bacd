from __future__ import annotations

import asyncio
import copy
import sys
from pathlib import Path
from typing import Any, Callable, Optional, Union

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))
from voice_client.core.config import Settings  # noqa: E402
from voice_client.core.errors import HostCallError  # noqa: E402


Failure = Union[str, Callable[[dict[str, Any]], Optional[str]]]


class FakeHost:
    """In-memory host: records calls, answers from `responses`, emits events on demand."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.responses: dict[str, Any] = {
            "get_listening_status": {"enabled": False, "active": False, "micAvailable": True},
            "get_recording_state": {"state": "Idle"},
            "list_recordings": [],
            "list_dictionary_entries": [],
            "list_window_contexts": [],
            "list_commands": [],
            "list_audio_devices": [],
            "list_running_applications": [],
            "check_parakeet_model_status": False,
        }
        self.failures: dict[str, Failure] = {}
        self.listeners: dict[str, list[Callable[[str, Any], None]]] = {}
        self.listen_delay = 0.0
        self.listen_failures: set[str] = set()
        self.closed = False

    async def invoke(self, command: str, args: Optional[dict[str, Any]] = None) -> Any:
        payload = dict(args or {})
        self.calls.append((command, payload))
        await asyncio.sleep(0)
        failure = self.failures.get(command)
        if callable(failure):
            failure = failure(payload)
        if failure:
            raise HostCallError(command, failure)
        response = self.responses.get(command)
        if callable(response):
            return response(payload)
        return copy.deepcopy(response)

    async def listen(self, event: str, handler: Callable[[str, Any], None]) -> Callable[[], None]:
        if self.listen_delay:
            await asyncio.sleep(self.listen_delay)
        if event in self.listen_failures:
            raise HostCallError("listen", f"cannot subscribe to {event}")
        self.listeners.setdefault(event, []).append(handler)

        def _unlisten() -> None:
            handlers = self.listeners.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unlisten

    def emit(self, event: str, payload: Any = None) -> None:
        for handler in list(self.listeners.get(event, ())):
            handler(event, payload)

    def listener_count(self) -> int:
        return sum(len(handlers) for handlers in self.listeners.values())

    def called(self, command: str) -> list[dict[str, Any]]:
        return [args for name, args in self.calls if name == command]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        wake_word_decay_ms=60,
        audio_level_interval_ms=20,
        log_dir=str(tmp_path / "logs"),
    )


async def settle(rounds: int = 20) -> None:
    """Let spawned refetch tasks run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)
