"""Transport to the native host: request/response calls and named push events."""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any, Callable, Optional, Protocol

import httpx
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import WebSocketException

from ..core.config import Settings
from ..core.errors import HostCallError
from ..core.logger import get_logger


EventHandler = Callable[[str, Any], None]
Unlisten = Callable[[], None]

logger = get_logger("client")


class Host(Protocol):
    """What the engine needs from the native host."""

    async def invoke(self, command: str, args: Optional[dict[str, Any]] = None) -> Any:
        """Run a host command; raises `HostCallError` on rejection."""
        ...

    async def listen(self, event: str, handler: EventHandler) -> Unlisten:
        """Subscribe `handler` to `event`; returns the release function."""
        ...


class HttpHost:
    """Host reached over HTTP for calls and a WebSocket for events.

    Calls are ``POST /invoke/<command>`` with the arguments as JSON body; the
    response body is the command result. Events arrive as
    ``{"event": <name>, "payload": <any>}`` text frames and are fanned out to
    the listeners of that name, in arrival order.
    """

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        timeout = httpx.Timeout(
            connect=settings.host_timeout_sec,
            read=settings.host_timeout_sec,
            write=settings.host_timeout_sec,
            pool=None,
        )
        self._client = httpx.AsyncClient(
            base_url=settings.host_base_url,
            timeout=timeout,
            transport=transport,
        )
        self._handlers: dict[str, list[EventHandler]] = {}
        self._reader: Optional[asyncio.Task[None]] = None

    async def invoke(self, command: str, args: Optional[dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.post(f"/invoke/{command}", json=args or {})
        except httpx.TimeoutException as exc:
            raise HostCallError(command, f"Timeout while calling {command}") from exc
        except httpx.HTTPError as exc:
            raise HostCallError(command, str(exc) or f"Transport error while calling {command}") from exc

        if response.is_error:
            raise HostCallError(command, self._error_text(response))
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            snippet = response.text[:200]
            raise HostCallError(command, f"Non-JSON response: {snippet}") from exc

    async def listen(self, event: str, handler: EventHandler) -> Unlisten:
        self._handlers.setdefault(event, []).append(handler)
        self._ensure_reader()

        def _unlisten() -> None:
            handlers = self._handlers.get(event)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return _unlisten

    def dispatch(self, raw: str | bytes) -> None:
        """Route one event frame to its listeners."""
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Trame d'evenement non JSON ignoree")
            return
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            logger.warning("Trame d'evenement sans nom ignoree")
            return
        name = message["event"]
        for handler in list(self._handlers.get(name, ())):
            try:
                handler(name, message.get("payload"))
            except Exception:
                logger.exception("Listener en echec pour %s", name)

    async def close(self) -> None:
        reader = self._reader
        self._reader = None
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await reader
        self._handlers.clear()
        await self._client.aclose()

    def _ensure_reader(self) -> None:
        if self._reader is None or self._reader.done():
            self._reader = asyncio.get_running_loop().create_task(self._read_events())

    async def _read_events(self) -> None:
        try:
            async with ws_connect(self.settings.host_events_url) as websocket:
                async for message in websocket:
                    self.dispatch(message)
        except (OSError, WebSocketException) as exc:
            logger.error("Flux d'evenements interrompu: %s", exc)

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text.strip() or f"HTTP {response.status_code}"
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str):
                return error
        if isinstance(data, str):
            return data
        return f"HTTP {response.status_code}"
