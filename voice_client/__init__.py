"""Client-side state engine of the voice dictation app."""

from __future__ import annotations

from typing import Any

__all__ = ["ClientApp", "run"]


def __getattr__(name: str) -> Any:
    if name == "ClientApp":
        from .app import ClientApp

        return ClientApp
    raise AttributeError(name)


def run(*args: Any, **kwargs: Any) -> Any:
    """Entrypoint de la CLI (import paresseux)."""
    from .cli import cli

    return cli(*args, **kwargs)
