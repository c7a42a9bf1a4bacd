"""Identifiants de trace attaches a chaque evenement traite."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator


_trace_id: ContextVar[str | None] = ContextVar("trace_id", default=None)
_event_name: ContextVar[str | None] = ContextVar("event_name", default=None)


def new_trace_id() -> str:
    return uuid.uuid4().hex[:12]


def get_trace_id() -> str | None:
    return _trace_id.get()


def get_event_name() -> str | None:
    return _event_name.get()


@contextmanager
def event_trace(event_name: str) -> Iterator[str]:
    """Scope a fresh trace id (and the event name) around one handler call."""
    tid = new_trace_id()
    tid_token = _trace_id.set(tid)
    name_token = _event_name.set(event_name)
    try:
        yield tid
    finally:
        _event_name.reset(name_token)
        _trace_id.reset(tid_token)
