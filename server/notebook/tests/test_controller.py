"""
Tests for the notebook reconciliation controller.

The controller runs against a memory store wrapped so individual operations
can be made to fail, which lets each rollback path be exercised.
"""

import asyncio
import json

import pytest

from .. import models as notebook_models
from ..backup import LocalBackup
from ..controller import NotebookController
from ..models import RecordDraft
from ..stores.local_store import LocalFileRecordStore
from .conftest import OWNER_ID, FlakyStore


def run(coro):
    return asyncio.run(coro)


async def started(controller):
    await controller.start()
    return controller


class TestCreate:
    """Test creating and duplicating records."""

    def test_sequence_numbers_increase(self, controller):
        async def scenario():
            await controller.start()
            first = await controller.create()
            second = await controller.create()
            return first, second

        first, second = run(scenario())

        assert first.sequence_number == 1
        assert second.sequence_number == 2
        assert [r.id for r in controller.records] == [second.id, first.id]

    def test_new_record_appears_through_notification(self, controller, store):
        run(started(controller))
        store.fail_on.add("list")

        record = run(controller.create())

        # The store could not re-list, so nothing was inserted locally
        assert record is not None
        assert controller.records == []

    def test_experimenter_carried_from_newest_record(self, controller):
        async def scenario():
            await controller.start()
            first = await controller.create()
            await controller.update(first.id, {"experimenter": "Ada"})
            return await controller.create()

        second = run(scenario())

        assert second.experimenter == "Ada"
        assert second.observations == ""
        assert second.transistors == {}

    def test_create_without_identity_reports_error(self):
        controller = NotebookController(FlakyStore())

        async def scenario():
            await controller.start()
            return await controller.create()

        assert run(scenario()) is None
        assert controller.error == "Failed to create record: User not authenticated"
        assert controller.records == []

    def test_create_store_failure(self, controller, store):
        run(started(controller))
        store.fail_on.add("create")

        assert run(controller.create()) is None
        assert controller.error == "Failed to create record: Store unreachable"

    def test_duplicate_copies_content(self, store, populated_content):
        async def scenario():
            original = await store.create(RecordDraft(sequence_number=1, **populated_content))
            controller = NotebookController(store)
            await controller.start()
            copy = await controller.duplicate(original.id)
            return controller, original, copy

        controller, original, copy = run(scenario())

        assert copy.id != original.id
        assert copy.sequence_number == 2
        assert copy.content() == original.content()
        assert len(controller.records) == 2

    def test_duplicate_unknown_record(self, controller):
        run(started(controller))

        assert run(controller.duplicate("missing")) is None
        assert "not found" in controller.error


class TestUpdate:
    """Test optimistic edits and their rollback."""

    def test_patch_replaces_only_sent_keys(self, store, populated_content):
        async def scenario():
            original = await store.create(RecordDraft(sequence_number=1, **populated_content))
            controller = NotebookController(store)
            await controller.start()
            ok = await controller.update(original.id, {"observations": "x"})
            return controller, original, ok

        controller, original, ok = run(scenario())

        assert ok is True
        record = controller.get(original.id)
        assert record.observations == "x"
        assert record.transistors == original.transistors
        assert record.capacitors == original.capacitors
        assert record.voltages == original.voltages
        assert record.waveform_image == original.waveform_image

    def test_nested_map_replaced_whole(self, store, populated_content):
        async def scenario():
            original = await store.create(RecordDraft(sequence_number=1, **populated_content))
            controller = NotebookController(store)
            await controller.start()
            await controller.update(original.id, {"capacitors": {"C2": "5p"}})
            return controller.get(original.id)

        assert run(scenario()).capacitors == {"C2": "5p"}

    def test_edit_is_visible_before_store_answers(self, controller, store):
        seen = []

        async def scenario():
            await controller.start()
            record = await controller.create()
            store.fail_on.add("update")
            controller.add_listener(lambda state: seen.append(state.records[0].observations))
            await controller.update(record.id, {"observations": "draft"})
            return record

        record = run(scenario())

        assert seen[0] == "draft"
        assert controller.get(record.id).observations == ""

    def test_failed_update_restores_only_patched_keys(self, store, populated_content):
        async def scenario():
            original = await store.create(RecordDraft(sequence_number=1, **populated_content))
            controller = NotebookController(store)
            await controller.start()
            await controller.update(original.id, {"voltages": {"V_don": "300"}})
            store.fail_on.add("update")
            ok = await controller.update(original.id, {"observations": "lost", "experimenter": "Bob"})
            return controller, original, ok

        controller, original, ok = run(scenario())

        record = controller.get(original.id)
        assert ok is False
        assert record.observations == original.observations
        assert record.experimenter == "Ada"
        assert record.voltages == {"V_don": "300"}
        assert controller.error == "Failed to update record: Store unreachable"

    def test_identity_keys_are_ignored(self, controller, store):
        async def scenario():
            await controller.start()
            record = await controller.create()
            ok = await controller.update(record.id, {"id": "other", "user_id": "mallory"})
            return record, ok

        record, ok = run(scenario())

        assert ok is True
        assert "update" not in store.calls
        assert controller.get(record.id).user_id == OWNER_ID

    def test_unknown_field_rejected(self, controller, store):
        async def scenario():
            await controller.start()
            record = await controller.create()
            return await controller.update(record.id, {"temperature": "300K"})

        assert run(scenario()) is False
        assert "temperature" in controller.error
        assert "update" not in store.calls

    def test_unknown_record(self, controller):
        run(started(controller))

        assert run(controller.update("missing", {"observations": "x"})) is False
        assert "not found" in controller.error


class TestDeleteAndUndo:
    """Test deletion, the undo buffer and re-creation."""

    def test_delete_then_undo_recreates_content(self, store, populated_content, monkeypatch):
        async def scenario():
            original = await store.create(RecordDraft(sequence_number=1, timestamp=1000, **populated_content))
            controller = NotebookController(store)
            await controller.start()
            await controller.delete(original.id)
            monkeypatch.setattr(notebook_models, "now_millis", lambda: 5000)
            restored = await controller.undo_delete()
            return controller, original, restored

        controller, original, restored = run(scenario())

        assert restored.id != original.id
        assert restored.sequence_number > original.sequence_number
        assert restored.timestamp == 5000
        assert restored.content() == original.content()
        assert [r.id for r in controller.records] == [restored.id]
        assert controller.deleted == []

    def test_undo_renumbers_after_current_maximum(self, controller):
        async def scenario():
            await controller.start()
            a = await controller.create()
            b = await controller.create()
            await controller.delete(a.id)
            restored = await controller.undo_delete()
            return a, b, restored

        a, b, restored = run(scenario())

        assert a.sequence_number == 1
        assert b.sequence_number == 2
        assert restored.sequence_number == 3
        assert [r.sequence_number for r in controller.records] == [3, 2]
        assert len(controller.records) == 2

    def test_undo_is_last_in_first_out(self, store):
        async def scenario():
            controller = NotebookController(store)
            await controller.start()
            first = await controller.create()
            await controller.update(first.id, {"observations": "first"})
            second = await controller.create()
            await controller.update(second.id, {"observations": "second"})
            await controller.delete(first.id)
            await controller.delete(second.id)
            return await controller.undo_delete()

        assert run(scenario()).observations == "second"

    def test_undo_with_empty_buffer(self, controller):
        run(started(controller))

        assert run(controller.undo_delete()) is None
        assert controller.error is None

    def test_failed_delete_restores_record_in_place(self, controller, store):
        async def scenario():
            await controller.start()
            for _ in range(3):
                await controller.create()
            store.fail_on.add("delete")
            middle = controller.records[1]
            ok = await controller.delete(middle.id)
            return middle, ok

        middle, ok = run(scenario())

        assert ok is False
        assert controller.records[1].id == middle.id
        assert controller.deleted == []
        assert controller.error == "Failed to delete record: Store unreachable"

    def test_record_already_gone_counts_as_deleted(self, controller, store):
        async def scenario():
            await controller.start()
            record = await controller.create()
            store.memory_records.pop(record.id)
            ok = await controller.delete(record.id)
            return record, ok

        record, ok = run(scenario())

        assert ok is True
        assert controller.get(record.id) is None
        assert [r.id for r in controller.deleted] == [record.id]
        assert controller.error is None

    def test_failed_undo_keeps_entry(self, controller, store):
        async def scenario():
            await controller.start()
            record = await controller.create()
            await controller.delete(record.id)
            store.fail_on.add("create")
            first_try = await controller.undo_delete()
            store.fail_on.clear()
            second_try = await controller.undo_delete()
            return first_try, second_try

        first_try, second_try = run(scenario())

        assert first_try is None
        assert second_try is not None
        assert controller.deleted == []
        assert len(controller.records) == 1

    def test_undo_limit_drops_oldest(self, store):
        controller = NotebookController(store, undo_limit=1)

        async def scenario():
            await controller.start()
            first = await controller.create()
            second = await controller.create()
            await controller.delete(first.id)
            await controller.delete(second.id)
            return second

        second = run(scenario())

        assert [r.id for r in controller.deleted] == [second.id]
        assert controller.state().undo_available == 1


class TestLoad:
    """Test loading, legacy data and the local backup."""

    def test_legacy_notebook_numbering(self, tmp_path, legacy_documents):
        path = tmp_path / "notebook.json"
        path.write_text(json.dumps(legacy_documents), encoding="utf-8")
        controller = NotebookController(LocalFileRecordStore(str(path)))

        async def scenario():
            await controller.start()
            return await controller.create()

        record = run(scenario())

        assert record.sequence_number == 4
        assert [r.sequence_number for r in controller.records] == [4, 3, 2, 1]

    def test_legacy_entries_without_ids_can_be_edited_and_deleted(self, tmp_path):
        path = tmp_path / "notebook.json"
        path.write_text(json.dumps([
            {"timestamp": 2, "observations": "keep"},
            {"timestamp": 1, "observations": "old"},
        ]), encoding="utf-8")
        controller = NotebookController(LocalFileRecordStore(str(path)))

        async def scenario():
            await controller.start()
            keep, old = controller.records
            updated = await controller.update(keep.id, {"observations": "new"})
            deleted = await controller.delete(old.id)
            await controller.load()
            return keep, updated, deleted

        keep, updated, deleted = run(scenario())

        assert updated is True
        assert deleted is True
        assert controller.error is None
        assert [(r.id, r.observations) for r in controller.records] == [(keep.id, "new")]

    def test_load_failure_keeps_records_and_reports(self, controller, store):
        async def scenario():
            await controller.start()
            await controller.create()
            store.fail_on.add("list")
            return await controller.load()

        assert run(scenario()) is False
        assert len(controller.records) == 1
        assert controller.error == "Failed to load records: Store unreachable"
        assert controller.loading is False

    def test_falls_back_to_local_backup(self, store, tmp_path):
        backup = LocalBackup(str(tmp_path / "backup.json"))

        async def scenario():
            first = NotebookController(store, backup=backup)
            await first.start()
            await first.create()
            await first.stop()

            store.fail_on.add("list")
            second = NotebookController(store, backup=backup)
            ok = await second.load()
            return first, second, ok

        first, second, ok = run(scenario())

        assert ok is False
        assert [r.id for r in second.records] == [r.id for r in first.records]
        assert second.error == "Failed to load records: Store unreachable (using local backup)"

    def test_successful_load_clears_error(self, controller, store):
        async def scenario():
            await controller.start()
            store.fail_on.add("list")
            await controller.load()
            store.fail_on.clear()
            return await controller.load()

        assert run(scenario()) is True
        assert controller.error is None

    def test_dismiss_error(self, controller, store):
        run(started(controller))
        store.fail_on.add("create")
        run(controller.create())

        run(controller.dismiss_error())

        assert controller.error is None


class TestObservers:
    """Test state listeners and export."""

    def test_listeners_receive_state(self, controller):
        states = []
        controller.add_listener(states.append)

        run(started(controller))

        assert states[0].loading is True
        assert states[-1].loading is False

    def test_async_listener_and_removal(self, controller):
        states = []

        async def listener(state):
            states.append(state)

        remove = controller.add_listener(listener)
        run(started(controller))
        count = len(states)
        remove()
        run(controller.create())

        assert count > 0
        assert len(states) == count

    def test_broken_listener_is_isolated(self, controller):
        def broken(state):
            raise RuntimeError("render failed")

        controller.add_listener(broken)

        async def scenario():
            await controller.start()
            return await controller.create()

        assert run(scenario()) is not None
        assert len(controller.records) == 1

    def test_stop_ignores_later_changes(self, controller, store):
        run(started(controller))
        run(controller.stop())

        run(store.create(RecordDraft(sequence_number=1)))

        assert controller.records == []

    def test_export_snapshot(self, controller):
        async def scenario():
            await controller.start()
            await controller.create()
            await controller.create()
            return controller.export()

        document = run(scenario())

        assert document.record_count == 2
        assert document.filename.startswith("experiment_records_")
        assert document.filename.endswith("Z.json")
        body = json.loads(document.to_json())
        assert body["record_count"] == 2
        assert [r["sequence_number"] for r in body["records"]] == [2, 1]


@pytest.mark.parametrize("limit", [None, 5])
def test_state_reports_undo_count(store, limit):
    controller = NotebookController(store, undo_limit=limit)

    async def scenario():
        await controller.start()
        record = await controller.create()
        await controller.delete(record.id)

    run(scenario())

    assert controller.state().undo_available == 1
