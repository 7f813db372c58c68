"""
Memory Record Store for the circuit lab notebook.

This module provides in-memory storage for experiment records. It serves as a
lightweight, no-dependency store for tests and throwaway sessions.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..errors import RecordNotFoundError
from ..models import ExperimentRecord, RecordDraft
from .base import RecordStore, allocate_sequence_number, writable_fields

logger = logging.getLogger(__name__)


class MemoryRecordStore(RecordStore):
    """
    In-memory record store using a Python dictionary, kept in insertion
    order so the newest record is always last.
    """

    storage_type = "in_memory"

    def __init__(self, owner_id: Optional[str] = None, records: Optional[List[ExperimentRecord]] = None):
        """Initialize in-memory record store, optionally seeded newest first."""
        super().__init__(owner_id=owner_id)
        self.memory_records: Dict[str, ExperimentRecord] = {}
        for record in reversed(records or []):
            self.memory_records[record.id] = record.model_copy(deep=True)

        logger.info("Initialized in-memory record store")

    async def list(self) -> List[ExperimentRecord]:
        return [record.model_copy(deep=True) for record in reversed(self.memory_records.values())]

    async def create(self, draft: RecordDraft) -> ExperimentRecord:
        owner_id = self.require_owner()
        stored_max = max((r.sequence_number for r in self.memory_records.values()), default=None)
        now = datetime.now()

        data = draft.model_dump()
        data['sequence_number'] = allocate_sequence_number(draft.sequence_number, stored_max)
        record = ExperimentRecord(
            id=str(uuid.uuid4()),
            user_id=owner_id,
            created_at=now,
            updated_at=now,
            **data
        )
        self.memory_records[record.id] = record
        logger.info(f"Created record {record.id} (sequence {record.sequence_number}) in memory")

        await self.notify_subscribers()
        return record.model_copy(deep=True)

    async def update(self, record_id: str, fields: Dict[str, Any]) -> ExperimentRecord:
        existing = self.memory_records.get(record_id)
        if existing is None:
            raise RecordNotFoundError(record_id)

        updated = existing.merged({**writable_fields(fields), "updated_at": datetime.now()})
        self.memory_records[record_id] = updated
        logger.info(f"Updated record {record_id} in memory")

        await self.notify_subscribers()
        return updated.model_copy(deep=True)

    async def delete(self, record_id: str) -> None:
        if self.memory_records.pop(record_id, None) is None:
            raise RecordNotFoundError(record_id)
        logger.info(f"Deleted record {record_id} from memory")

        await self.notify_subscribers()

    def get_storage_stats(self) -> Dict[str, Any]:
        """
        Get storage statistics.

        Returns:
            Dictionary with storage statistics
        """
        return {
            "storage_type": self.storage_type,
            "records_count": len(self.memory_records),
            "subscribers_count": len(self._subscribers),
        }
