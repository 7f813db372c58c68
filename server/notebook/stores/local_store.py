"""
Local-only record store backed by a JSON document on disk.

The document is a display-ordered (newest first) array in the camelCase
shape older notebooks wrote, so files from those notebooks open directly.
Entries missing newer fields are migrated on read.
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import RecordNotFoundError, StoreError
from ..models import ExperimentRecord, RecordDraft
from ..serialization import generate_record_id, needs_migration, records_from_documents, records_to_json
from .base import RecordStore, allocate_sequence_number, writable_fields

logger = logging.getLogger(__name__)


class LocalFileRecordStore(RecordStore):
    """Record store persisting the whole notebook to one JSON file."""

    storage_type = "local_file"

    def __init__(self, path: str, owner_id: Optional[str] = None, seed_initial_record: bool = True):
        super().__init__(owner_id=owner_id)
        self.path = Path(path)
        self.seed_initial_record = seed_initial_record

    def _read(self) -> List[ExperimentRecord]:
        if not self.path.exists():
            if not self.seed_initial_record:
                return []
            # A fresh notebook starts with one blank record
            now = datetime.now()
            seeded = [ExperimentRecord(
                id=generate_record_id(),
                user_id=self.owner_id or "",
                sequence_number=1,
                created_at=now,
                updated_at=now,
            )]
            self._write(seeded)
            logger.info(f"Seeded new notebook file at {self.path}")
            return seeded

        try:
            documents = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(documents, list):
                raise ValueError("Expected a JSON array of records")
            records = records_from_documents(documents, legacy=True)
        except OSError as e:
            logger.error(f"Error reading notebook file {self.path}: {str(e)}")
            raise StoreError(f"Could not read notebook file: {str(e)}")
        except ValueError as e:
            logger.error(f"Notebook file {self.path} is not valid: {str(e)}")
            raise StoreError(f"Notebook file is corrupt: {str(e)}")

        # Ids and numbers assigned on migration must survive the next read
        if any(needs_migration(document) for document in documents):
            self._write(records)
            logger.info(f"Migrated legacy entries in {self.path}")
        return records

    def _write(self, records: List[ExperimentRecord]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Replace atomically so a crash never leaves half a file
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(records_to_json(records, legacy=True))
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Error writing notebook file {self.path}: {str(e)}")
            raise StoreError(f"Could not write notebook file: {str(e)}")

    async def list(self) -> List[ExperimentRecord]:
        return self._read()

    async def create(self, draft: RecordDraft) -> ExperimentRecord:
        records = self._read()
        stored_max = max((r.sequence_number for r in records), default=None)
        now = datetime.now()

        data = draft.model_dump()
        data['sequence_number'] = allocate_sequence_number(draft.sequence_number, stored_max)
        record = ExperimentRecord(
            id=generate_record_id(),
            user_id=self.owner_id or "",
            created_at=now,
            updated_at=now,
            **data
        )
        self._write([record] + records)
        logger.info(f"Created record {record.id} (sequence {record.sequence_number}) in {self.path}")

        await self.notify_subscribers()
        return record

    async def update(self, record_id: str, fields: Dict[str, Any]) -> ExperimentRecord:
        records = self._read()
        for index, existing in enumerate(records):
            if existing.id == record_id:
                break
        else:
            raise RecordNotFoundError(record_id)

        updated = existing.merged({**writable_fields(fields), "updated_at": datetime.now()})
        records[index] = updated
        self._write(records)
        logger.info(f"Updated record {record_id} in {self.path}")

        await self.notify_subscribers()
        return updated

    async def delete(self, record_id: str) -> None:
        records = self._read()
        remaining = [r for r in records if r.id != record_id]
        if len(remaining) == len(records):
            raise RecordNotFoundError(record_id)

        self._write(remaining)
        logger.info(f"Deleted record {record_id} from {self.path}")

        await self.notify_subscribers()

    def get_storage_stats(self) -> Dict[str, Any]:
        """Basic information about the notebook file."""
        return {
            "storage_type": self.storage_type,
            "path": str(self.path),
            "exists": self.path.exists(),
            "size_bytes": self.path.stat().st_size if self.path.exists() else 0,
        }
