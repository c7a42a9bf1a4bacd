from __future__ import annotations

import asyncio
import json
from dataclasses import asdict
from typing import Any, Optional

import typer

from voice_client.app import ClientApp
from voice_client.core.config import Settings, get_settings
from voice_client.core.errors import ClientError, error_message
from voice_client.core.logger import configure_logging
from voice_client.runtime.overrides import context_badges
from voice_client.services.api import HostAPI
from voice_client.services.host import HttpHost


cli = typer.Typer(name="voice-client", help="Client de dictee vocale: etat et contextes")


def build_host(settings: Settings) -> HttpHost:
    return HttpHost(settings)


def _emit(data: Any) -> None:
    typer.echo(json.dumps(data, ensure_ascii=False, default=str))


def _status_line(app: ClientApp, source: str) -> dict[str, Any]:
    line = asdict(app.status)
    line["source"] = source
    line["wake_word"] = app.signals.wake_word_detected
    line["models"] = {name: asdict(status) for name, status in app.signals.models.items()}
    return line


async def _watch(settings: Settings, seconds: float) -> None:
    host = build_host(settings)
    app = ClientApp(host, settings)
    changed: asyncio.Queue[str] = asyncio.Queue()
    release = app.subscribe(changed.put_nowait)
    try:
        await app.start()
        _emit(_status_line(app, "start"))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds if seconds > 0 else None
        while True:
            timeout = None if deadline is None else deadline - loop.time()
            if timeout is not None and timeout <= 0:
                break
            try:
                source = await asyncio.wait_for(changed.get(), timeout)
            except asyncio.TimeoutError:
                break
            if source == "audio_level":
                continue
            _emit(_status_line(app, source))
    finally:
        release()
        await app.stop()
        await host.close()


async def _status(settings: Settings) -> dict[str, Any]:
    host = build_host(settings)
    api = HostAPI(host)
    try:
        recording = await api.get_recording_state()
        listening = await api.get_listening_status()
    finally:
        await host.close()
    return {
        "recording": recording.state,
        "listening": listening.enabled,
        "mic_available": listening.mic_available,
    }


async def _contexts(settings: Settings) -> list[dict[str, Any]]:
    host = build_host(settings)
    api = HostAPI(host)
    try:
        contexts = await api.list_window_contexts()
    finally:
        await host.close()
    rows = []
    for ctx in sorted(contexts, key=lambda c: (-c.priority, c.name.lower())):
        rows.append(
            {
                "id": ctx.id,
                "name": ctx.name,
                "app": ctx.matcher.app_name,
                "enabled": ctx.enabled,
                "priority": ctx.priority,
                "badges": [
                    {"kind": badge.kind, "label": badge.label, "count": badge.count}
                    for badge in context_badges(ctx)
                ],
            }
        )
    return rows


@cli.command()
def watch(
    seconds: float = typer.Option(0.0, "--seconds", help="Duree d'observation (0 = jusqu'a Ctrl+C)"),
) -> None:
    """Afficher le statut derive a chaque changement (JSON lines)."""
    settings = get_settings()
    configure_logging(settings)
    try:
        asyncio.run(_watch(settings, seconds))
    except KeyboardInterrupt:
        pass


@cli.command()
def status() -> None:
    """Etat d'enregistrement et d'ecoute de l'hote."""
    settings = get_settings()
    try:
        _emit(asyncio.run(_status(settings)))
    except ClientError as exc:
        typer.echo(f"Erreur: {error_message(exc)}", err=True)
        raise typer.Exit(code=1)


@cli.command()
def contexts(
    app_name: Optional[str] = typer.Option(None, "--app", help="Filtrer par application"),
) -> None:
    """Lister les contextes de fenetre avec leurs modes."""
    settings = get_settings()
    try:
        rows = asyncio.run(_contexts(settings))
    except ClientError as exc:
        typer.echo(f"Erreur: {error_message(exc)}", err=True)
        raise typer.Exit(code=1)
    if app_name:
        rows = [row for row in rows if row["app"].lower() == app_name.lower()]
    _emit({"contexts": rows})


if __name__ == "__main__":
    cli()
