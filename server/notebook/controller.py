"""
Reconciliation controller for the circuit lab notebook.

The controller owns the in-memory record list shown to users. Edits and
deletions are applied locally first and then sent to the record store; a
failed store call is rolled back precisely and reported through a single
error banner. New records are never inserted locally: they appear when the
store's change notification delivers a fresh listing.

Deleted records go to an undo buffer. Because stores delete for good, undo
re-creates the record's content as a new record with a new id, sequence
number and timestamp.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .backup import LocalBackup
from .errors import NotebookError, RecordNotFoundError
from .export import ExportDocument, build_export
from .models import PROTECTED_FIELDS, ExperimentRecord, RecordDraft
from .stores.base import RecordStore, Unsubscribe

logger = logging.getLogger(__name__)

StateListener = Callable[["NotebookState"], Union[None, Awaitable[None]]]


class NotebookState(BaseModel):
    """What the presentation layer renders."""
    records: List[ExperimentRecord] = Field(default_factory=list)
    error: Optional[str] = None
    undo_available: int = 0
    loading: bool = False


class NotebookController:
    """
    Keeps the displayed records consistent with a RecordStore.

    Args:
        store: Backend the records live in
        backup: Optional local copy used when the store is unreachable
        undo_limit: Maximum undo entries kept, None for unbounded
    """

    def __init__(
        self,
        store: RecordStore,
        backup: Optional[LocalBackup] = None,
        undo_limit: Optional[int] = None
    ):
        self.store = store
        self.backup = backup
        self.undo_limit = undo_limit

        self.records: List[ExperimentRecord] = []
        self.deleted: List[ExperimentRecord] = []
        self.error: Optional[str] = None
        self.loading = False

        self._unsubscribe: Optional[Unsubscribe] = None
        self._listeners: List[StateListener] = []

    # === Lifecycle ===

    async def start(self) -> None:
        """Subscribe to store changes and load the initial records."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_records_changed)
        await self.load()

    async def stop(self) -> None:
        """Stop receiving store changes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` with the new state after every change."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def state(self) -> NotebookState:
        """Snapshot of the current state."""
        return NotebookState(
            records=[record.model_copy(deep=True) for record in self.records],
            error=self.error,
            undo_available=len(self.deleted),
            loading=self.loading
        )

    async def _changed(self) -> None:
        state = self.state()
        for listener in list(self._listeners):
            try:
                result = listener(state)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Notebook state listener failed: {str(e)}")

    async def _fail(self, message: str, error: Optional[Exception] = None) -> None:
        if error is not None:
            logger.error(f"{message}: {error}")
        else:
            logger.error(message)
        self.error = message
        await self._changed()

    def _replace_records(self, records: List[ExperimentRecord]) -> None:
        self.records = list(records)
        if self.backup is not None:
            self.backup.save(self.records)

    async def _on_records_changed(self, records: List[ExperimentRecord]) -> None:
        logger.debug(f"Store delivered {len(records)} records")
        self._replace_records(records)
        await self._changed()

    # === Queries ===

    def get(self, record_id: str) -> Optional[ExperimentRecord]:
        """Return the displayed record with ``record_id``."""
        for record in self.records:
            if record.id == record_id:
                return record
        return None

    def _index_of(self, record_id: str) -> Optional[int]:
        for index, record in enumerate(self.records):
            if record.id == record_id:
                return index
        return None

    def next_sequence_number(self) -> int:
        """One more than the largest displayed sequence number."""
        return max((record.sequence_number for record in self.records), default=0) + 1

    # === Operations ===

    async def load(self) -> bool:
        """
        Replace the displayed records with the store's listing.

        Falls back to the local backup when the store fails.

        Returns:
            True if the store answered, False otherwise
        """
        self.loading = True
        await self._changed()
        try:
            records = await self.store.list()
        except NotebookError as e:
            cached = self.backup.load() if self.backup is not None else None
            if cached is not None:
                logger.warning(f"Store unavailable, showing {len(cached)} records from local backup")
                self.records = cached
                message = f"Failed to load records: {e.message} (using local backup)"
            else:
                message = f"Failed to load records: {e.message}"
            self.loading = False
            await self._fail(message, e)
            return False

        self._replace_records(records)
        self.error = None
        self.loading = False
        logger.info(f"Loaded {len(records)} records")
        await self._changed()
        return True

    async def _submit_create(self, draft: RecordDraft, action: str) -> Optional[ExperimentRecord]:
        try:
            record = await self.store.create(draft)
        except NotebookError as e:
            await self._fail(f"Failed to {action}: {e.message}", e)
            return None
        logger.info(f"Stored record {record.id} (sequence {record.sequence_number})")
        return record

    async def create(self) -> Optional[ExperimentRecord]:
        """
        Create a blank record numbered after the current maximum.

        The experimenter is carried over from the newest displayed record.
        """
        draft = RecordDraft(
            sequence_number=self.next_sequence_number(),
            experimenter=self.records[0].experimenter if self.records else ""
        )
        return await self._submit_create(draft, "create record")

    async def duplicate(self, record_id: str) -> Optional[ExperimentRecord]:
        """Create a new record with the content of ``record_id``."""
        source = self.get(record_id)
        if source is None:
            await self._fail(f"Failed to duplicate record: record {record_id} not found")
            return None
        draft = source.to_draft(self.next_sequence_number())
        return await self._submit_create(draft, "duplicate record")

    async def update(self, record_id: str, patch: Dict[str, Any]) -> bool:
        """
        Merge ``patch`` into a record locally, then persist it.

        Top-level keys replace the record's values; nested maps are replaced
        whole. Identity and bookkeeping keys are ignored.

        Returns:
            True if the store accepted the change
        """
        fields = {key: value for key, value in patch.items() if key not in PROTECTED_FIELDS}
        unknown = sorted(set(fields) - set(ExperimentRecord.model_fields))
        if unknown:
            await self._fail(f"Failed to update record: unknown field(s) {', '.join(unknown)}")
            return False

        index = self._index_of(record_id)
        if index is None:
            await self._fail(f"Failed to update record: record {record_id} not found")
            return False
        if not fields:
            return True

        original = self.records[index]
        previous = original.model_dump(include=set(fields))
        try:
            self.records[index] = original.merged(fields)
        except ValidationError as e:
            await self._fail("Failed to update record: invalid field values", e)
            return False
        await self._changed()

        try:
            await self.store.update(record_id, fields)
        except NotebookError as e:
            # Put back only the keys this patch touched
            current = self._index_of(record_id)
            if current is not None:
                self.records[current] = self.records[current].merged(previous)
            await self._fail(f"Failed to update record: {e.message}", e)
            return False
        return True

    async def delete(self, record_id: str) -> bool:
        """
        Remove a record locally, keep it for undo, then delete it in the store.

        Returns:
            True if the record is gone from the store
        """
        index = self._index_of(record_id)
        if index is None:
            await self._fail(f"Failed to delete record: record {record_id} not found")
            return False

        record = self.records.pop(index)
        self.deleted.append(record)
        if self.undo_limit is not None and len(self.deleted) > self.undo_limit:
            del self.deleted[0]
        await self._changed()

        try:
            await self.store.delete(record_id)
        except RecordNotFoundError:
            # Ids never change once stored, so the record is already gone
            logger.warning(f"Record {record_id} was already deleted from the store")
            return True
        except NotebookError as e:
            self.deleted = [entry for entry in self.deleted if entry is not record]
            if self._index_of(record_id) is None:
                self.records.insert(min(index, len(self.records)), record)
            await self._fail(f"Failed to delete record: {e.message}", e)
            return False
        logger.info(f"Deleted record {record_id}")
        return True

    async def undo_delete(self) -> Optional[ExperimentRecord]:
        """
        Re-create the most recently deleted record as a new record.

        A failed re-create puts the entry back so undo can be retried.
        """
        if not self.deleted:
            return None

        entry = self.deleted.pop()
        await self._changed()

        record = await self._submit_create(entry.to_draft(self.next_sequence_number()), "restore record")
        if record is None:
            self.deleted.append(entry)
            await self._changed()
        return record

    def export(self) -> ExportDocument:
        """Snapshot the displayed records for download."""
        return build_export(self.records)

    async def dismiss_error(self) -> None:
        """Clear the error banner."""
        if self.error is not None:
            self.error = None
            await self._changed()
