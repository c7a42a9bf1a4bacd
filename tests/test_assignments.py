from __future__ import annotations

import pytest

from voice_client.core.errors import EntityReferencedError, PartialSyncError
from voice_client.runtime.assignments import (
    AssignmentSynchronizer,
    assigned_context_ids,
    contexts_by_entity_id,
    plan_assignment,
)
from voice_client.services.schemas import WindowContext


def ctx(ctx_id: str, command_ids=(), dictionary_entry_ids=(), **extra) -> WindowContext:
    return WindowContext(
        id=ctx_id,
        name=f"Context {ctx_id}",
        matcher={"app_name": "Slack", "title_pattern": None},
        command_ids=list(command_ids),
        dictionary_entry_ids=list(dictionary_entry_ids),
        **extra,
    )


class Recorder:
    def __init__(self, contexts, fail_ids=()):
        self.contexts = list(contexts)
        self.fail_ids = set(fail_ids)
        self.updates: list[WindowContext] = []

    async def provide(self):
        return list(self.contexts)

    async def update(self, context: WindowContext):
        if context.id in self.fail_ids:
            raise RuntimeError(f"update of {context.id} rejected")
        self.updates.append(context)


def test_reverse_index_is_rebuilt_from_contexts():
    contexts = [ctx("A", command_ids=["x", "y"]), ctx("B", command_ids=["x"]), ctx("C", dictionary_entry_ids=["x"])]
    index = contexts_by_entity_id(contexts, "command")
    assert [c.id for c in index["x"]] == ["A", "B"]
    assert [c.id for c in index["y"]] == ["A"]
    assert assigned_context_ids("x", index) == ["A", "B"]
    assert assigned_context_ids("missing", index) == []
    assert [c.id for c in contexts_by_entity_id(contexts, "dictionary")["x"]] == ["C"]


def test_plan_diff():
    contexts = [ctx("A", command_ids=["e"]), ctx("B"), ctx("C", command_ids=["e"]), ctx("D")]
    plan = plan_assignment("e", ["C", "D"], contexts, "command")
    assert plan.to_add == ("D",)
    assert plan.to_remove == ("A",)


def test_plan_skips_unknown_and_duplicate_ids():
    plan = plan_assignment("e", ["B", "ghost", "B"], [ctx("A"), ctx("B")], "dictionary")
    assert plan.to_add == ("B",)
    assert plan.to_remove == ()


@pytest.mark.asyncio
async def test_sync_issues_one_update_per_changed_context():
    recorder = Recorder(
        [
            ctx("A", command_ids=["e", "other"], priority=3),
            ctx("B"),
            ctx("C", command_ids=["e"]),
            ctx("D", dictionary_entry_ids=["d1"]),
        ]
    )
    sync = AssignmentSynchronizer(recorder.provide, recorder.update)
    result = await sync.sync("e", ["C", "D"], "command")

    assert [u.id for u in recorder.updates] == ["D", "A"]
    added, removed = recorder.updates
    assert added.command_ids == ["e"]
    assert added.dictionary_entry_ids == ["d1"]
    assert removed.command_ids == ["other"]
    assert removed.priority == 3
    assert result.applied == ["D", "A"]
    assert result.failed == {}


@pytest.mark.asyncio
async def test_empty_sets_issue_nothing():
    recorder = Recorder([ctx("A"), ctx("B")])
    sync = AssignmentSynchronizer(recorder.provide, recorder.update)
    result = await sync.sync("e", [], "command")
    assert result.plan.is_empty
    assert recorder.updates == []


@pytest.mark.asyncio
async def test_first_failure_stops_remaining_updates():
    recorder = Recorder([ctx("A"), ctx("B"), ctx("C")], fail_ids={"B"})
    sync = AssignmentSynchronizer(recorder.provide, recorder.update)

    with pytest.raises(PartialSyncError) as excinfo:
        await sync.sync("e", ["A", "B", "C"], "command")

    err = excinfo.value
    assert err.applied == ["A"]
    assert err.failed == {"B": "update of B rejected"}
    assert err.skipped == ["C"]
    assert "1 updated, 1 failed: B, 1 not attempted" in str(err)
    # No rollback: the update before the failure stays applied, C is never sent.
    assert [u.id for u in recorder.updates] == ["A"]


@pytest.mark.asyncio
async def test_failure_on_last_update_has_nothing_skipped():
    recorder = Recorder([ctx("A", command_ids=["e"]), ctx("B")], fail_ids={"A"})
    sync = AssignmentSynchronizer(recorder.provide, recorder.update)

    with pytest.raises(PartialSyncError) as excinfo:
        await sync.sync("e", ["B"], "command")

    assert excinfo.value.applied == ["B"]
    assert excinfo.value.skipped == []
    assert "not attempted" not in str(excinfo.value)


@pytest.mark.asyncio
async def test_check_unreferenced_lists_context_names():
    recorder = Recorder([ctx("A", dictionary_entry_ids=["d1"]), ctx("B", dictionary_entry_ids=["d1"])])
    sync = AssignmentSynchronizer(recorder.provide, recorder.update)
    with pytest.raises(EntityReferencedError) as excinfo:
        await sync.check_unreferenced("d1", "dictionary")
    assert excinfo.value.context_names == ["Context A", "Context B"]
    await sync.check_unreferenced("d2", "dictionary")
