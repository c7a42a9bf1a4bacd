"""Many-to-many synchronisation between window contexts and entities.

A command or dictionary entry belongs to a context when its id is listed in
the context's ``command_ids`` / ``dictionary_entry_ids``. Saving an entity
with a desired set of contexts is turned into the minimal list of context
updates: add the id where it is missing, drop it where it is no longer
wanted, leave every other context alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Sequence

from ..core.errors import EntityReferencedError, PartialSyncError, error_message
from ..core.logger import get_logger
from ..services.schemas import EntityKind, WindowContext


ContextUpdater = Callable[[WindowContext], Awaitable[None]]
ContextsProvider = Callable[[], Awaitable[list[WindowContext]]]

logger = get_logger("sync")


def contexts_by_entity_id(
    contexts: Iterable[WindowContext],
    kind: EntityKind,
) -> dict[str, list[WindowContext]]:
    """Reverse index entity id -> contexts listing it, rebuilt from scratch."""
    index: dict[str, list[WindowContext]] = {}
    for ctx in contexts:
        for entity_id in ctx.entity_ids(kind):
            bucket = index.setdefault(entity_id, [])
            if ctx not in bucket:
                bucket.append(ctx)
    return index


@dataclass(slots=True, frozen=True)
class AssignmentPlan:
    """Context updates needed to reach the desired membership."""

    entity_id: str
    kind: EntityKind
    to_add: tuple[str, ...] = ()
    to_remove: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


@dataclass(slots=True)
class SyncResult:
    plan: AssignmentPlan
    applied: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)


def plan_assignment(
    entity_id: str,
    desired_context_ids: Iterable[str],
    contexts: Sequence[WindowContext],
    kind: EntityKind,
) -> AssignmentPlan:
    """Diff the entity's current contexts against the desired ones.

    Desired ids naming no known context are skipped.
    """
    known = {ctx.id for ctx in contexts}
    desired: list[str] = []
    for ctx_id in desired_context_ids:
        if ctx_id not in known:
            logger.warning("Contexte inconnu ignore: %s", ctx_id)
            continue
        if ctx_id not in desired:
            desired.append(ctx_id)

    previous = [ctx.id for ctx in contexts if entity_id in ctx.entity_ids(kind)]
    to_add = tuple(ctx_id for ctx_id in desired if ctx_id not in previous)
    to_remove = tuple(ctx_id for ctx_id in previous if ctx_id not in desired)
    return AssignmentPlan(entity_id=entity_id, kind=kind, to_add=to_add, to_remove=to_remove)


def _added(ctx: WindowContext, kind: EntityKind, entity_id: str) -> WindowContext:
    ids = ctx.entity_ids(kind)
    if entity_id in ids:
        return ctx
    return ctx.with_entity_ids(kind, [*ids, entity_id])


def _removed(ctx: WindowContext, kind: EntityKind, entity_id: str) -> WindowContext:
    return ctx.with_entity_ids(kind, [i for i in ctx.entity_ids(kind) if i != entity_id])


class AssignmentSynchronizer:
    """Applies assignment plans through sequential context updates.

    There is no transaction: a failed update does not roll back the ones
    already applied. The first failure stops the run, and a single
    `PartialSyncError` lists the applied ids and the failed one; the rest
    are reported as not attempted.
    """

    def __init__(self, contexts: ContextsProvider, update_context: ContextUpdater) -> None:
        self._contexts = contexts
        self._update_context = update_context

    async def sync(self, entity_id: str, desired_context_ids: Iterable[str], kind: EntityKind) -> SyncResult:
        """Make `entity_id` belong to exactly `desired_context_ids`."""
        contexts = await self._contexts()
        plan = plan_assignment(entity_id, desired_context_ids, contexts, kind)
        return await self.apply(plan, contexts)

    async def apply(self, plan: AssignmentPlan, contexts: Sequence[WindowContext]) -> SyncResult:
        result = SyncResult(plan=plan)
        if plan.is_empty:
            return result

        by_id = {ctx.id: ctx for ctx in contexts}
        steps = [(ctx_id, _added) for ctx_id in plan.to_add]
        steps.extend((ctx_id, _removed) for ctx_id in plan.to_remove)

        for position, (ctx_id, change) in enumerate(steps):
            ctx = by_id.get(ctx_id)
            if ctx is None:
                continue
            try:
                await self._update_context(change(ctx, plan.kind, plan.entity_id))
            except Exception as exc:
                logger.warning("Mise a jour du contexte %s en echec: %s", ctx_id, exc)
                result.failed[ctx_id] = error_message(exc)
                result.skipped.extend(rest for rest, _ in steps[position + 1 :] if rest in by_id)
                break
            result.applied.append(ctx_id)

        logger.info(
            "Synchro %s %s: +%d -%d (echecs: %d, non tentes: %d)",
            plan.kind,
            plan.entity_id,
            len(plan.to_add),
            len(plan.to_remove),
            len(result.failed),
            len(result.skipped),
        )
        if result.failed:
            raise PartialSyncError(plan.entity_id, result.applied, result.failed, result.skipped)
        return result

    async def release_entity(self, entity_id: str, kind: EntityKind) -> SyncResult:
        """Remove the entity from every context (desired set = none)."""
        return await self.sync(entity_id, (), kind)

    async def referencing_contexts(self, entity_id: str, kind: EntityKind) -> list[WindowContext]:
        contexts = await self._contexts()
        return contexts_by_entity_id(contexts, kind).get(entity_id, [])

    async def check_unreferenced(self, entity_id: str, kind: EntityKind) -> None:
        """Raise `EntityReferencedError` while contexts still list the entity."""
        referencing = await self.referencing_contexts(entity_id, kind)
        if referencing:
            raise EntityReferencedError(entity_id, [ctx.name for ctx in referencing])


def assigned_context_ids(
    entity_id: str,
    index: dict[str, list[WindowContext]],
) -> list[str]:
    """Context ids currently holding the entity, in index order."""
    return [ctx.id for ctx in index.get(entity_id, [])]
