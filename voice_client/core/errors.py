from __future__ import annotations

from typing import Sequence


class ClientError(Exception):
    """Base class for errors raised by the client engine."""


class HostCallError(ClientError):
    """A request/response call to the native host was rejected."""

    def __init__(self, command: str, message: str) -> None:
        super().__init__(message)
        self.command = command
        self.message = message


class PayloadError(ClientError):
    """An event payload did not match the expected shape."""

    def __init__(self, event: str, message: str) -> None:
        super().__init__(f"{event}: {message}")
        self.event = event


class InvalidInputError(ClientError):
    """A user-supplied field was rejected before reaching the host."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class PartialSyncError(ClientError):
    """A context update failed while syncing an entity's contexts."""

    def __init__(
        self,
        entity_id: str,
        applied: Sequence[str],
        failed: dict[str, str],
        skipped: Sequence[str] = (),
    ) -> None:
        self.entity_id = entity_id
        self.applied = list(applied)
        self.failed = dict(failed)
        self.skipped = list(skipped)
        names = ", ".join(sorted(self.failed))
        detail = f"{len(self.applied)} updated, {len(self.failed)} failed: {names}"
        if self.skipped:
            detail += f", {len(self.skipped)} not attempted"
        super().__init__(f"Context assignments were only partially saved ({detail})")


class EntityReferencedError(ClientError):
    """Deletion refused because window contexts still reference the entity."""

    def __init__(self, entity_id: str, context_names: Sequence[str]) -> None:
        self.entity_id = entity_id
        self.context_names = list(context_names)
        super().__init__(f"Still used by: {', '.join(self.context_names)}")


def error_message(exc: BaseException | str | None) -> str:
    """Map any failure to the string shown next to the triggering action."""
    if exc is None:
        return "Unknown error"
    if isinstance(exc, str):
        return exc
    if isinstance(exc, (HostCallError, InvalidInputError)):
        return exc.message
    text = str(exc)
    return text or exc.__class__.__name__
