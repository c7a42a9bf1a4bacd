"""Resolution of the commands / dictionary entries active inside a context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence, TypeVar, Union

from ..services.schemas import Command, DictionaryEntry, EntityKind, OverrideMode, WindowContext


Entity = TypeVar("Entity", Command, DictionaryEntry)

MODE_LABELS: dict[OverrideMode, str] = {"merge": "Merge", "replace": "Context Only"}


def _is_enabled(entity: Union[Command, DictionaryEntry]) -> bool:
    return getattr(entity, "enabled", True)


def effective_entities(
    context: WindowContext,
    global_entities: Sequence[Entity],
    kind: EntityKind,
) -> list[Entity]:
    """Entities in effect while `context` matches.

    ``merge``: enabled globals followed by the listed ids not already present.
    ``replace``: exactly the listed ids that exist, in listing order.
    """
    by_id = {entity.id: entity for entity in global_entities}
    listed = [by_id[entity_id] for entity_id in context.entity_ids(kind) if entity_id in by_id]

    if context.mode(kind) == "replace":
        result: list[Entity] = []
        for entity in listed:
            if entity not in result:
                result.append(entity)
        return result

    result = [entity for entity in global_entities if _is_enabled(entity)]
    seen = {entity.id for entity in result}
    for entity in listed:
        if entity.id not in seen:
            seen.add(entity.id)
            result.append(entity)
    return result


@dataclass(slots=True, frozen=True)
class ContextBadge:
    kind: EntityKind
    mode: OverrideMode
    label: str
    count: int


def context_badges(context: WindowContext) -> list[ContextBadge]:
    """Mode label and assigned count for commands then dictionary entries."""
    badges = []
    for kind in ("command", "dictionary"):
        mode = context.mode(kind)
        badges.append(
            ContextBadge(
                kind=kind,
                mode=mode,
                label=MODE_LABELS[mode],
                count=len(set(context.entity_ids(kind))),
            )
        )
    return badges


def dangling_ids(
    contexts: Iterable[WindowContext],
    entity_ids: Iterable[str],
    kind: EntityKind,
) -> dict[str, list[str]]:
    """Context id -> listed ids that name no existing entity."""
    known = set(entity_ids)
    broken: dict[str, list[str]] = {}
    for ctx in contexts:
        missing = [entity_id for entity_id in ctx.entity_ids(kind) if entity_id not in known]
        if missing:
            broken[ctx.id] = missing
    return broken
